from typing import List, Optional

from config.utils import as_bool, as_float
from strategy.execution_types import Alert, OrderInstruction, OrderStatus, OrderTicket, Position
from strategy.simulators.paper import PaperTradingSimulator
from strategy.transports.base import ExchangeSettings, ExchangeTransport


class PaperTransport(ExchangeTransport):
    """Exchange adapter backed by the in-memory simulator; needs no credentials."""

    label = "Paper"
    required_credentials = ()

    def __init__(self, settings: ExchangeSettings, simulator: Optional[PaperTradingSimulator] = None):
        super().__init__(settings)
        self.fill_immediately = as_bool(settings.extra.get("fill_immediately"), True)
        self.simulator = simulator or PaperTradingSimulator(
            exchange=settings.name,
            initial_equity=as_float(settings.extra.get("initial_equity"), 1000.0),
        )

    async def is_account_ready(self) -> bool:
        return True

    async def fetch_open_positions(self) -> List[Position]:
        return self.simulator.open_positions()

    async def fetch_equity(self) -> Optional[float]:
        return self.simulator.equity

    async def place_limit_order(self, instruction: OrderInstruction, alert: Alert) -> OrderTicket:
        ticket = self.simulator.create_order(
            instruction.market,
            instruction.side,
            instruction.size,
            instruction.limit_price,
        )
        if ticket is None:
            raise ValueError(f"Paper order for {instruction.market} rejected: size {instruction.size}")
        if self.fill_immediately:
            self.simulator.fill(ticket.id)
        return ticket

    async def fetch_order_status(self, ticket: OrderTicket) -> OrderStatus:
        return self.simulator.order_status(ticket.id)

    async def cancel_order(self, ticket: OrderTicket) -> None:
        self.simulator.cancel(ticket.id)
