import asyncio
import logging
from typing import Any, Dict, Optional

from api.metrics import metrics, start_metrics_server
from api.validation import LEGACY_EXCHANGE, AlertValidationError, validate_alert
from config import config
from config.utils import as_bool, as_float, as_int, get_config_section
from ingest.position_poller import PositionPoller
from monitoring.async_utils import run_tasks_with_cleanup
from monitoring.dedupe import DedupeGuard
from monitoring.logging_utils import setup_logging
from orchestration.persistence import PositionExporter
from orchestration.position_cache import PositionCache
from risk.position_sizer import PositionSizer
from strategy.execution import ExecutionManager
from strategy.fill_supervisor import FillTimeoutSupervisor
from strategy.registry import ExchangeRegistry


logger = logging.getLogger(__name__)

RESPONSE_OK = "OK"
RESPONSE_INVALID = "Error. alert message is not valid"
RESPONSE_DUPLICATE = "Duplicate alert ignored"
RESPONSE_ERROR = "error"


def unsupported_exchange(exchange: str) -> str:
    return f"Error. Exchange: {exchange} is not supported"


class RelayService:
    """Alert relay: validate, dedupe, route to an exchange, size, submit, supervise."""

    def __init__(
        self,
        registry: ExchangeRegistry,
        cache: Optional[PositionCache] = None,
        dedupe: Optional[DedupeGuard] = None,
        sizer: Optional[PositionSizer] = None,
        supervisor: Optional[FillTimeoutSupervisor] = None,
        exporter: Optional[PositionExporter] = None,
        passphrase: Optional[str] = None,
        default_exchange: str = LEGACY_EXCHANGE,
        poll_interval_s: float = 30.0,
        enforce_lock: bool = True,
        metrics_port: Optional[int] = None,
    ):
        self.registry = registry
        self.cache = cache if cache is not None else PositionCache()
        self.dedupe = dedupe if dedupe is not None else DedupeGuard()
        self.sizer = sizer if sizer is not None else PositionSizer()
        self.supervisor = supervisor if supervisor is not None else FillTimeoutSupervisor()
        self.passphrase = passphrase
        self.default_exchange = default_exchange
        self.metrics_port = metrics_port
        self.execution = ExecutionManager(self.cache, self.sizer, self.supervisor, enforce_lock=enforce_lock)
        self.poller = PositionPoller(registry, self.cache, exporter, interval_s=poll_interval_s)
        self.running = False

    @classmethod
    def from_config(cls, cfg: Any = config) -> "RelayService":
        relay_cfg = get_config_section(cfg, "relay")
        dedupe_cfg = get_config_section(cfg, "dedupe")
        sizing_cfg = get_config_section(cfg, "sizing")
        positions_cfg = get_config_section(cfg, "positions")
        monitoring_cfg = get_config_section(cfg, "monitoring")

        return cls(
            registry=ExchangeRegistry.from_config(cfg),
            dedupe=DedupeGuard(ttl_ms=as_float(dedupe_cfg.get("ttl_ms"), 5000.0)),
            sizer=PositionSizer(default_min_profit_pct=as_float(sizing_cfg.get("min_profit_pct"))),
            exporter=PositionExporter(positions_cfg.get("export_dir") or "data/custom/exports"),
            passphrase=relay_cfg.get("passphrase") or None,
            default_exchange=str(relay_cfg.get("default_exchange") or LEGACY_EXCHANGE).lower(),
            poll_interval_s=as_float(positions_cfg.get("poll_interval_s"), 30.0),
            enforce_lock=as_bool(relay_cfg.get("enforce_exchange_lock"), True),
            metrics_port=as_int(monitoring_cfg.get("prometheus_port")),
        )

    async def handle_alert(self, payload: Any) -> str:
        try:
            alert = validate_alert(payload, self.passphrase, default_exchange=self.default_exchange)
        except AlertValidationError as exc:
            logger.error("Alert rejected: %s", exc)
            metrics.record_rejected("invalid")
            return RESPONSE_INVALID

        if not self.dedupe.should_process_alert(payload):
            metrics.record_rejected("duplicate")
            return RESPONSE_DUPLICATE

        metrics.record_alert(alert.exchange)
        transport = self.registry.get(alert.exchange)
        if transport is None:
            logger.error("Exchange %s is not supported", alert.exchange)
            metrics.record_rejected("unsupported_exchange")
            return unsupported_exchange(alert.exchange)

        logger.info(
            "[%s] alert %s %s %s @ %s (strategy=%s)",
            transport.label,
            alert.order,
            alert.market,
            alert.size or alert.size_usd or alert.size_by_leverage,
            alert.price,
            alert.strategy,
        )
        try:
            result = await self.execution.execute(alert, transport)
        except Exception as exc:
            logger.error("[%s] alert for %s failed: %s", transport.label, alert.market, exc)
            return RESPONSE_ERROR

        if not result.submitted:
            logger.info("[%s] alert for %s skipped: %s", transport.label, alert.market, result.skip_reason.value)
        return RESPONSE_OK

    async def accounts(self) -> Dict[str, bool]:
        ready = await self.registry.readiness()
        for transport in self.registry:
            metrics.mark_account_ready(transport.name, ready.get(transport.label, False))
        return ready

    async def start(self) -> None:
        if self.running:
            return
        self.running = True
        if self.metrics_port:
            start_metrics_server(self.metrics_port)
        self.poller.start()
        logger.info("Relay started with exchanges: %s", ", ".join(t.label for t in self.registry) or "none")

    async def stop(self) -> None:
        if not self.running:
            return
        self.running = False
        await self.poller.stop()
        await self.supervisor.shutdown()
        await self.registry.close()
        logger.info("Relay stopped")


async def main():
    import uvicorn

    from api.fastapi_server import create_app

    service = RelayService.from_config(config)
    app = create_app(service)
    server = uvicorn.Server(
        uvicorn.Config(
            app,
            host=config.api.get("host", "0.0.0.0"),
            port=as_int(config.api.get("port"), 3000),
            log_level="info",
        )
    )
    tasks = [asyncio.create_task(server.serve())]
    await run_tasks_with_cleanup(tasks, cleanup=service.stop)


if __name__ == "__main__":
    setup_logging(config.monitoring.get("log_level", "INFO"))
    asyncio.run(main())
