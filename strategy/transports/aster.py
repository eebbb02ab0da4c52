import asyncio
from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from config.utils import as_bool
from ingest.rest_client import QuerySignedRESTClient
from strategy.execution_types import LONG, SHORT, Alert, OrderInstruction, OrderStatus, OrderTicket, Position
from strategy.transports.base import ExchangeSettings, ExchangeTransport


__all__ = ["AsterTransport", "SymbolInfo"]

DEFAULT_BASE_URL = "https://fapi.asterdex.com"
DEFAULT_TICK_SIZE = 0.1
DEFAULT_AMOUNT_STEP = 0.001


@dataclass
class SymbolInfo:
    symbol: str
    price_precision: Optional[int]
    quantity_precision: Optional[int]
    price_tick: Optional[float]
    amount_step: Optional[float]
    raw: Dict[str, Any]

    def tick_size(self) -> float:
        if self.price_tick:
            return self.price_tick
        if self.price_precision is not None:
            return round(10 ** -self.price_precision, 10)
        return DEFAULT_TICK_SIZE

    def amount_step_size(self) -> float:
        if self.amount_step:
            return self.amount_step
        if self.quantity_precision is not None:
            return round(10 ** -self.quantity_precision, 10)
        return DEFAULT_AMOUNT_STEP


def _step_decimals(step: float) -> int:
    return max(0, -Decimal(str(step)).normalize().as_tuple().exponent)


def round_to_step(value: float, step: float, rounding: str = ROUND_HALF_UP) -> float:
    """Snap ``value`` to a whole multiple of ``step``.

    Prices go to the nearest tick; quantities pass ``ROUND_DOWN`` so an order
    never exceeds the size it was given.
    """
    step_dec = Decimal(str(step))
    units = (Decimal(str(value)) / step_dec).quantize(Decimal(1), rounding=rounding)
    return float(units * step_dec)


def format_step(value: float, step: float) -> str:
    return f"{value:.{_step_decimals(step)}f}"


class AsterTransport(ExchangeTransport):
    """Aster futures adapter over the Binance-compatible ``/fapi`` REST surface."""

    label = "Aster"

    def __init__(self, settings: ExchangeSettings, rest: Optional[QuerySignedRESTClient] = None):
        super().__init__(settings)
        self.hedge_mode = as_bool(settings.extra.get("hedge_mode"), False)
        self._rest = rest
        self._symbols: Dict[str, SymbolInfo] = {}
        self._lock = asyncio.Lock()

    def _client(self) -> QuerySignedRESTClient:
        if self._rest is None:
            self._rest = QuerySignedRESTClient(
                self.settings.base_url or DEFAULT_BASE_URL,
                exchange=self.label,
                api_key=self.settings.api_key,
                api_secret=self.settings.api_secret,
            )
        return self._rest

    async def is_account_ready(self) -> bool:
        if not self.has_credentials:
            return False
        data = await self._client().get("/fapi/v2/balance", signed=True)
        return isinstance(data, list)

    async def fetch_open_positions(self) -> List[Position]:
        self.ensure_configured()
        data = await self._client().get("/fapi/v2/positionRisk", signed=True)
        if not isinstance(data, list):
            return []
        positions: List[Position] = []
        for item in data:
            amount = self._as_float(item.get("positionAmt"))
            if not amount:
                continue
            positions.append(
                Position.from_signed(
                    item.get("symbol", ""),
                    amount,
                    self._as_float(item.get("entryPrice")) or 0.0,
                )
            )
        return positions

    async def fetch_equity(self) -> Optional[float]:
        self.ensure_configured()
        data = await self._client().get("/fapi/v2/account", signed=True)
        if not isinstance(data, dict):
            return None
        total_wallet = self._as_float(data.get("totalWalletBalance"))
        if total_wallet is not None:
            return total_wallet
        for asset in data.get("assets") or []:
            if asset.get("asset") not in ("USDT", "USDC"):
                continue
            balance = self._as_float(asset.get("walletBalance") or asset.get("marginBalance"))
            if balance is not None:
                return balance
        return None

    async def fetch_symbol_info(self, symbol: str) -> Optional[SymbolInfo]:
        async with self._lock:
            cached = self._symbols.get(symbol)
            if cached is not None:
                return cached
            data = await self._client().get("/fapi/v1/exchangeInfo")
            if not isinstance(data, dict):
                return None
            for payload in data.get("symbols") or []:
                info = self._parse_symbol_info(payload)
                self._symbols[info.symbol] = info
            return self._symbols.get(symbol)

    async def place_limit_order(self, instruction: OrderInstruction, alert: Alert) -> OrderTicket:
        self.ensure_configured()
        info = await self.fetch_symbol_info(instruction.market)
        tick = info.tick_size() if info else DEFAULT_TICK_SIZE
        step = info.amount_step_size() if info else DEFAULT_AMOUNT_STEP
        price = round_to_step(instruction.limit_price, tick)
        quantity = round_to_step(instruction.size, step, ROUND_DOWN)
        if quantity <= 0:
            raise ValueError(f"{instruction.market} order size {instruction.size} is below the lot step {step}")

        params: Dict[str, Any] = {
            "symbol": instruction.market,
            "side": instruction.side.upper(),
            "type": "LIMIT",
            "timeInForce": "GTC",
            "quantity": format_step(quantity, step),
            "price": format_step(price, tick),
            "newOrderRespType": "RESULT",
        }
        if self.hedge_mode and instruction.direction in (LONG, SHORT):
            params["positionSide"] = instruction.direction.upper()
        data = await self._client().post("/fapi/v1/order", params=params, signed=True)
        return self._parse_order_ack(data, instruction)

    async def fetch_order_status(self, ticket: OrderTicket) -> OrderStatus:
        data = await self._client().get(
            "/fapi/v1/order",
            params={"symbol": ticket.market, "orderId": ticket.id},
            signed=True,
        )
        if not isinstance(data, dict):
            return OrderStatus()
        return OrderStatus(
            status=data.get("status"),
            quantity=self._as_float(data.get("origQty")) or 0.0,
            filled_qty=self._as_float(data.get("executedQty")) or 0.0,
        )

    async def cancel_order(self, ticket: OrderTicket) -> None:
        await self._client().delete(
            "/fapi/v1/order",
            params={"symbol": ticket.market, "orderId": ticket.id},
            signed=True,
        )

    async def close(self) -> None:
        if self._rest:
            try:
                await self._rest.close()
            finally:
                self._rest = None

    def _parse_symbol_info(self, payload: Dict[str, Any]) -> SymbolInfo:
        price_tick = None
        amount_step = None
        for filt in payload.get("filters", []):
            ftype = filt.get("filterType")
            if ftype == "PRICE_FILTER" and price_tick is None:
                price_tick = self._as_float(filt.get("tickSize"))
            elif ftype == "LOT_SIZE" and amount_step is None:
                amount_step = self._as_float(filt.get("stepSize"))
        return SymbolInfo(
            symbol=payload.get("symbol", ""),
            price_precision=self._as_int(payload.get("pricePrecision")),
            quantity_precision=self._as_int(payload.get("quantityPrecision")),
            price_tick=price_tick,
            amount_step=amount_step,
            raw=payload,
        )

    def _parse_order_ack(self, payload: Any, instruction: OrderInstruction) -> OrderTicket:
        if not isinstance(payload, dict):
            payload = {}
        order_id = payload.get("orderId")
        return OrderTicket(
            exchange=self.name,
            market=payload.get("symbol") or instruction.market,
            side=(payload.get("side") or instruction.side).lower(),
            quantity=self._as_float(payload.get("origQty")) or instruction.size,
            price=self._as_float(payload.get("price")) or instruction.limit_price,
            status=payload.get("status"),
            order_id=str(order_id) if order_id is not None else None,
            client_order_id=payload.get("clientOrderId"),
            raw=payload,
        )

    @staticmethod
    def _as_int(value: Any) -> Optional[int]:
        if value is None:
            return None
        try:
            return int(value)
        except (TypeError, ValueError):
            return None
