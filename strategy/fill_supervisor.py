import asyncio
import logging
from enum import Enum
from typing import Set

from api.metrics import metrics
from monitoring.async_utils import cancel_and_wait
from strategy.execution_types import OrderTicket
from strategy.transports.base import ExchangeTransport


logger = logging.getLogger(__name__)


class FillOutcome(Enum):
    SUBMITTED = "submitted"
    FILLED = "filled"
    CANCELLED = "cancelled"
    UNKNOWN = "unknown"


class FillTimeoutSupervisor:
    """Cancel orders that are still unfilled once their wait time runs out.

    One detached task per order. A failed status query leaves the order alone,
    since it may already have filled.
    """

    def __init__(self):
        self._tasks: Set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def watch(self, transport: ExchangeTransport, ticket: OrderTicket, wait_s: float) -> asyncio.Task:
        task = asyncio.create_task(
            self.supervise(transport, ticket, wait_s),
            name=f"fill-timeout-{transport.name}-{ticket.id}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._discard)
        metrics.update_pending_fill_checks(len(self._tasks))
        return task

    async def supervise(self, transport: ExchangeTransport, ticket: OrderTicket, wait_s: float) -> FillOutcome:
        await asyncio.sleep(max(wait_s, 0.0))

        try:
            status = await transport.fetch_order_status(ticket)
        except Exception as exc:
            logger.error("[%s] order %s status query failed, leaving it open: %s", transport.label, ticket.id, exc)
            metrics.record_order_unknown(transport.name)
            return FillOutcome.UNKNOWN

        if status.is_filled:
            logger.info("[%s] order %s filled", transport.label, ticket.id)
            metrics.record_order_filled(transport.name)
            return FillOutcome.FILLED

        try:
            await transport.cancel_order(ticket)
            logger.info("[%s] order %s canceled after %.0fs", transport.label, ticket.id, wait_s)
        except Exception as exc:
            logger.error("[%s] cancel of order %s failed: %s", transport.label, ticket.id, exc)
        metrics.record_order_cancelled(transport.name)
        return FillOutcome.CANCELLED

    async def shutdown(self) -> None:
        cancelled = await cancel_and_wait(self._tasks.copy())
        if cancelled:
            logger.info("Cancelled %s pending fill checks", cancelled)
        self._tasks.clear()
        metrics.update_pending_fill_checks(0)

    def _discard(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        metrics.update_pending_fill_checks(len(self._tasks))
        if not task.cancelled() and task.exception() is not None:
            logger.error("Fill-timeout task failed: %s", task.exception())
