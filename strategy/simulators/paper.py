import uuid
from dataclasses import dataclass
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional

from api.metrics import metrics

from strategy.execution_types import BUY, LONG, SHORT, OrderStatus, OrderTicket, Position


@dataclass
class PaperPosition:
    market: str
    qty: float
    entry_price: float

    @property
    def side(self) -> str:
        return LONG if self.qty >= 0 else SHORT


class PaperTradingSimulator:
    """In-memory exchange: limit orders, netted positions per market, realized PnL."""

    def __init__(self, exchange: str = "paper", initial_equity: float = 1000.0) -> None:
        self.exchange = exchange
        self._equity = initial_equity
        self._orders: Dict[str, OrderTicket] = {}
        self._filled: Dict[str, float] = {}
        self._positions: Dict[str, PaperPosition] = {}

    @property
    def equity(self) -> float:
        return self._equity

    @property
    def positions(self) -> Mapping[str, PaperPosition]:
        return MappingProxyType(self._positions)

    def create_order(self, market: str, side: str, qty: float, price: float) -> Optional[OrderTicket]:
        if qty <= 0:
            return None
        order_id = f"paper-{uuid.uuid4().hex[:8]}"
        ticket = OrderTicket(
            exchange=self.exchange,
            market=market,
            side=side.lower(),
            quantity=qty,
            price=price,
            status="open",
            order_id=order_id,
        )
        self._orders[order_id] = ticket
        self._filled[order_id] = 0.0
        return ticket

    def fill(self, order_id: str, price: Optional[float] = None) -> bool:
        ticket = self._orders.get(order_id)
        if ticket is None or ticket.status != "open":
            return False
        fill_price = price if price is not None else ticket.price
        self._apply_fill(ticket.market, ticket.side, ticket.quantity, fill_price)
        ticket.status = "filled"
        self._filled[order_id] = ticket.quantity
        return True

    def cancel(self, order_id: Optional[str] = None) -> int:
        if order_id is None:
            open_ids = [oid for oid, ticket in self._orders.items() if ticket.status == "open"]
        else:
            open_ids = [order_id] if order_id in self._orders and self._orders[order_id].status == "open" else []
        for oid in open_ids:
            self._orders[oid].status = "cancelled"
        return len(open_ids)

    def order_status(self, order_id: str) -> OrderStatus:
        ticket = self._orders.get(order_id)
        if ticket is None:
            raise KeyError(f"Unknown paper order {order_id}")
        return OrderStatus(status=ticket.status, quantity=ticket.quantity, filled_qty=self._filled.get(order_id, 0.0))

    def open_positions(self) -> List[Position]:
        return [
            Position.from_signed(pos.market, pos.qty, pos.entry_price)
            for pos in self._positions.values()
            if pos.qty != 0
        ]

    def record_pnl(self, pnl: float) -> None:
        self._equity += pnl
        metrics.update_equity(self.exchange, self._equity)

    def _apply_fill(self, market: str, side: str, qty: float, price: float) -> None:
        signed = qty if side == BUY else -qty
        pos = self._positions.get(market)
        if pos is None or pos.qty == 0:
            self._positions[market] = PaperPosition(market=market, qty=signed, entry_price=price)
            return

        if (pos.qty > 0) == (signed > 0):
            total = pos.qty + signed
            pos.entry_price = (pos.entry_price * abs(pos.qty) + price * abs(signed)) / abs(total)
            pos.qty = total
            return

        closed = min(abs(pos.qty), abs(signed))
        direction = 1.0 if pos.qty > 0 else -1.0
        self.record_pnl((price - pos.entry_price) * closed * direction)
        remaining = pos.qty + signed
        if remaining == 0:
            del self._positions[market]
        elif (remaining > 0) == (pos.qty > 0):
            pos.qty = remaining
        else:
            self._positions[market] = PaperPosition(market=market, qty=remaining, entry_price=price)
