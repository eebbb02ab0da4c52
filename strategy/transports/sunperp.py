from typing import List, Optional

from ingest.rest_client import BearerRESTClient
from strategy.execution_types import SHORT, LONG, Alert, OrderInstruction, OrderStatus, OrderTicket, Position
from strategy.transports.base import ExchangeSettings, ExchangeTransport


__all__ = ["SunPerpTransport"]

DEFAULT_BASE_URL = "https://api.sunperp.com"


class SunPerpTransport(ExchangeTransport):
    """SunPerp adapter. Authenticates with the API key as a bearer token."""

    label = "SunPerp"
    required_credentials = ("api_key",)

    def __init__(self, settings: ExchangeSettings, rest: Optional[BearerRESTClient] = None):
        super().__init__(settings)
        self._rest = rest

    def _client(self) -> BearerRESTClient:
        if self._rest is None:
            self._rest = BearerRESTClient(
                self.settings.base_url or DEFAULT_BASE_URL,
                exchange=self.label,
                api_key=self.settings.api_key,
            )
        return self._rest

    async def is_account_ready(self) -> bool:
        if not self.has_credentials:
            return False
        await self._client().get("/account/balance")
        return True

    async def fetch_open_positions(self) -> List[Position]:
        self.ensure_configured()
        data = await self._client().get("/positions")
        positions: List[Position] = []
        for item in data if isinstance(data, list) else []:
            size = self._as_float(item.get("size")) or 0.0
            if size <= 0:
                continue
            side = (item.get("side") or LONG).lower()
            positions.append(
                Position(
                    market=item.get("market", ""),
                    side=SHORT if side == SHORT else LONG,
                    size=size,
                    entry_price=self._as_float(item.get("entryPrice")) or 0.0,
                    created_at=item.get("timestamp"),
                )
            )
        return positions

    async def fetch_equity(self) -> Optional[float]:
        self.ensure_configured()
        data = await self._client().get("/account/balance")
        total = None
        for balance in data if isinstance(data, list) else []:
            amount = self._as_float(balance.get("total") or balance.get("available"))
            if amount is not None:
                total = (total or 0.0) + amount
        return total

    async def place_limit_order(self, instruction: OrderInstruction, alert: Alert) -> OrderTicket:
        self.ensure_configured()
        body = {
            "market": instruction.market,
            "side": instruction.side,
            "type": "limit",
            "size": instruction.size,
            "price": instruction.limit_price,
        }
        data = await self._client().post("/orders", json_body=body)
        payload = data if isinstance(data, dict) else {}
        return OrderTicket(
            exchange=self.name,
            market=instruction.market,
            side=instruction.side,
            quantity=self._as_float(payload.get("size")) or instruction.size,
            price=self._as_float(payload.get("price")) or instruction.limit_price,
            status=payload.get("status"),
            order_id=str(payload["id"]) if payload.get("id") is not None else None,
            raw=payload,
        )

    async def fetch_order_status(self, ticket: OrderTicket) -> OrderStatus:
        """Status from the open-orders list; an order that has left it counts as filled."""
        data = await self._client().get("/orders", params={"market": ticket.market})
        for item in data if isinstance(data, list) else []:
            if str(item.get("id")) != ticket.id:
                continue
            return OrderStatus(
                status=item.get("status"),
                quantity=self._as_float(item.get("size")) or 0.0,
                filled_qty=self._as_float(item.get("filledSize")) or 0.0,
            )
        return OrderStatus(status="filled", quantity=ticket.quantity, filled_qty=ticket.quantity)

    async def cancel_order(self, ticket: OrderTicket) -> None:
        await self._client().delete(f"/orders/{ticket.id}")

    async def close(self) -> None:
        if self._rest:
            try:
                await self._rest.close()
            finally:
                self._rest = None
