from typing import Any, Dict, List, Optional

from ingest.rest_client import HeaderSignedRESTClient
from strategy.execution_types import BUY, LONG, SHORT, Alert, OrderInstruction, OrderStatus, OrderTicket, Position
from strategy.transports.base import ExchangeSettings, ExchangeTransport


__all__ = ["NexoTransport", "position_action"]

DEFAULT_BASE_URL = "https://api.pro.nexo.com/rest"


def position_action(side: str, position_side: str) -> str:
    """Nexo futures orders say whether they open or close ``position_side``."""
    opening = (position_side == LONG and side == BUY) or (position_side == SHORT and side != BUY)
    return "open" if opening else "close"


class NexoTransport(ExchangeTransport):
    """Nexo Pro futures adapter: header-signed JSON REST."""

    label = "Nexo"

    def __init__(self, settings: ExchangeSettings, rest: Optional[HeaderSignedRESTClient] = None):
        super().__init__(settings)
        self._rest = rest

    def _client(self) -> HeaderSignedRESTClient:
        if self._rest is None:
            self._rest = HeaderSignedRESTClient(
                self.settings.base_url or DEFAULT_BASE_URL,
                exchange=self.label,
                api_key=self.settings.api_key,
                api_secret=self.settings.api_secret,
            )
        return self._rest

    async def is_account_ready(self) -> bool:
        if not self.has_credentials:
            return False
        await self._client().get("/futures/account/balances", signed=True)
        return True

    async def fetch_open_positions(self) -> List[Position]:
        self.ensure_configured()
        data = await self._client().get("/futures/positions", signed=True)
        items = data.get("positions") if isinstance(data, dict) else data
        positions: List[Position] = []
        for item in items or []:
            quantity = abs(self._as_float(item.get("quantity")) or 0.0)
            if quantity <= 0:
                continue
            side = (item.get("positionSide") or LONG).lower()
            positions.append(
                Position(
                    market=item.get("instrument", ""),
                    side=SHORT if side == SHORT else LONG,
                    size=quantity,
                    entry_price=self._as_float(item.get("entryPrice")) or 0.0,
                    created_at=str(item["timestamp"]) if item.get("timestamp") is not None else None,
                )
            )
        return positions

    async def fetch_equity(self) -> Optional[float]:
        self.ensure_configured()
        data = await self._client().get("/futures/account/balances", signed=True)
        balances = data.get("balances") if isinstance(data, dict) else data
        total = None
        for balance in balances or []:
            if balance.get("assetName", balance.get("asset")) not in ("USDT", "USDC", "USD"):
                continue
            amount = self._as_float(balance.get("totalBalance") or balance.get("availableBalance"))
            if amount is not None:
                total = (total or 0.0) + amount
        return total

    async def place_limit_order(self, instruction: OrderInstruction, alert: Alert) -> OrderTicket:
        self.ensure_configured()
        position_side = instruction.direction or (LONG if instruction.side == BUY else SHORT)
        body: Dict[str, Any] = {
            "instrument": instruction.market,
            "type": "limit",
            "positionAction": position_action(instruction.side, position_side),
            "positionSide": position_side,
            "quantity": str(instruction.size),
            "price": str(instruction.limit_price),
            "timeInForce": "GTC",
        }
        data = await self._client().post("/futures/orders", json_body=body, signed=True)
        payload = data if isinstance(data, dict) else {}
        order_id = payload.get("id") or payload.get("orderId")
        return OrderTicket(
            exchange=self.name,
            market=instruction.market,
            side=instruction.side,
            quantity=instruction.size,
            price=instruction.limit_price,
            status=payload.get("status"),
            order_id=str(order_id) if order_id is not None else None,
            raw=payload,
        )

    async def fetch_order_status(self, ticket: OrderTicket) -> OrderStatus:
        data = await self._client().get(f"/futures/orders/{ticket.id}", signed=True)
        if not isinstance(data, dict):
            return OrderStatus()
        return OrderStatus(
            status=data.get("status"),
            quantity=self._as_float(data.get("quantity")) or 0.0,
            filled_qty=self._as_float(data.get("executedQuantity")) or 0.0,
        )

    async def cancel_order(self, ticket: OrderTicket) -> None:
        await self._client().delete(f"/futures/orders/{ticket.id}", signed=True)

    async def close(self) -> None:
        if self._rest:
            try:
                await self._rest.close()
            finally:
                self._rest = None
