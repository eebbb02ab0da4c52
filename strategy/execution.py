import contextlib
import logging
import time
from dataclasses import dataclass
from typing import Optional

from api.metrics import metrics
from ingest.rest_client import ExchangeAPIError
from orchestration.position_cache import PositionCache
from risk.position_sizer import PositionSizer, SizingDecision, SkipReason
from strategy.execution_types import Alert, OrderTicket
from strategy.fill_supervisor import FillTimeoutSupervisor
from strategy.transports.base import ExchangeTransport


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExecutionResult:
    ticket: Optional[OrderTicket] = None
    decision: Optional[SizingDecision] = None

    @property
    def submitted(self) -> bool:
        return self.ticket is not None

    @property
    def skip_reason(self) -> Optional[SkipReason]:
        return self.decision.skip_reason if self.decision else None


class ExecutionManager:
    """Size an alert against cached positions, submit it and hand the order to the fill supervisor."""

    def __init__(
        self,
        cache: PositionCache,
        sizer: PositionSizer,
        supervisor: FillTimeoutSupervisor,
        enforce_lock: bool = True,
    ):
        self.cache = cache
        self.sizer = sizer
        self.supervisor = supervisor
        self.enforce_lock = enforce_lock
        if not enforce_lock:
            logger.warning("Per-exchange order lock disabled; concurrent alerts may size against the same position")

    async def execute(self, alert: Alert, transport: ExchangeTransport) -> ExecutionResult:
        transport.ensure_configured()
        requested_size = await transport.resolve_order_size(alert)
        market = transport.normalize_market(alert.market)

        lock = self.cache.lock(transport.name) if self.enforce_lock else contextlib.nullcontext()
        async with lock:
            snapshot = self.cache.snapshot(transport.name)
            decision = self.sizer.decide(
                alert,
                requested_size,
                snapshot,
                market=market,
                only_sell=transport.only_sell,
            )
            if decision.skipped:
                metrics.record_skip(transport.name, decision.skip_reason.name.lower())
                return ExecutionResult(decision=decision)

            instruction = decision.instruction
            logger.info(
                "[%s] placing %s %s %s @ %s",
                transport.label,
                instruction.side,
                instruction.size,
                instruction.market,
                instruction.limit_price,
            )
            started = time.perf_counter()
            try:
                ticket = await transport.place_limit_order(instruction, alert)
            except Exception as exc:
                self._log_transport_error(transport, "limit order", exc)
                metrics.record_order_failed(transport.name)
                raise
            metrics.record_order_placed(transport.name, instruction.side, time.perf_counter() - started)

        if ticket.id is None:
            logger.warning(
                "[%s] %s order for %s acknowledged without an id; fill timeout not armed",
                transport.label,
                ticket.side,
                ticket.market,
            )
            return ExecutionResult(ticket=ticket, decision=decision)

        logger.info("[%s] order %s accepted (status=%s)", transport.label, ticket.id, ticket.status)
        self.supervisor.watch(transport, ticket, transport.fill_wait_s)
        return ExecutionResult(ticket=ticket, decision=decision)

    @staticmethod
    def _log_transport_error(transport: ExchangeTransport, action: str, error: Exception) -> None:
        if isinstance(error, ExchangeAPIError):
            logger.error(
                "[%s] %s failed (status=%s, code=%s, msg=%s)",
                transport.label,
                action,
                error.status,
                error.code,
                error.msg,
            )
        else:
            logger.error("[%s] %s failed: %s", transport.label, action, error)
