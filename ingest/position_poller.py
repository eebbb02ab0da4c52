import asyncio
import logging
from typing import Dict, Optional

from api.metrics import metrics
from monitoring.async_utils import cancel_and_wait
from orchestration.persistence import PositionExporter
from orchestration.position_cache import PositionCache
from strategy.registry import ExchangeRegistry
from strategy.transports.base import ExchangeTransport


logger = logging.getLogger(__name__)


class PositionPoller:
    """Refresh the position cache for every configured exchange on a fixed interval."""

    def __init__(
        self,
        registry: ExchangeRegistry,
        cache: PositionCache,
        exporter: Optional[PositionExporter] = None,
        interval_s: float = 30.0,
    ):
        self.registry = registry
        self.cache = cache
        self.exporter = exporter
        self.interval_s = interval_s
        self.running = False
        self.fail_counts: Dict[str, int] = {}
        self._task: Optional[asyncio.Task] = None

    async def poll_once(self) -> Dict[str, bool]:
        transports = list(self.registry.configured())
        results = await asyncio.gather(*(self._poll_exchange(t) for t in transports))
        return {transport.name: ok for transport, ok in zip(transports, results)}

    async def _poll_exchange(self, transport: ExchangeTransport) -> bool:
        try:
            positions = await transport.fetch_open_positions()
        except Exception as exc:
            count = self.fail_counts.get(transport.name, 0) + 1
            self.fail_counts[transport.name] = count
            metrics.record_poll_failure(transport.name)
            logger.warning("[%s] position fetch failed (%s in a row): %s", transport.label, count, exc)
            return False

        self.fail_counts[transport.name] = 0
        snapshot = self.cache.replace(transport.name, positions)
        metrics.update_open_positions(transport.name, len(snapshot))

        if self.exporter is not None:
            try:
                self.exporter.write_snapshot(transport.label, snapshot)
            except Exception as exc:
                logger.error("[%s] position export failed: %s", transport.label, exc)
        return True

    async def run(self) -> None:
        self.running = True
        try:
            while self.running:
                try:
                    await self.poll_once()
                except Exception:
                    logger.exception("Position poll cycle failed")
                await asyncio.sleep(self.interval_s)
        finally:
            self.running = False

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run(), name="position-poller")
        return self._task

    async def stop(self) -> None:
        self.running = False
        if self._task is None:
            return
        await cancel_and_wait([self._task])
        self._task = None
