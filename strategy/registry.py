import asyncio
import logging
from enum import Enum
from typing import Any, Dict, Iterator, Optional, Type

from config.utils import as_float, get_config_section
from strategy.transports.aster import AsterTransport
from strategy.transports.base import DEFAULT_FILL_WAIT_S, ExchangeSettings, ExchangeTransport
from strategy.transports.nexo import NexoTransport
from strategy.transports.paper import PaperTransport
from strategy.transports.sunperp import SunPerpTransport


logger = logging.getLogger(__name__)


class ExchangeName(str, Enum):
    ASTER = "aster"
    NEXO = "nexo"
    SUNPERP = "sunperp"
    PAPER = "paper"

    @property
    def label(self) -> str:
        return _LABELS[self]

    @classmethod
    def parse(cls, value: Any) -> Optional["ExchangeName"]:
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return None


_LABELS = {
    ExchangeName.ASTER: "Aster",
    ExchangeName.NEXO: "Nexo",
    ExchangeName.SUNPERP: "SunPerp",
    ExchangeName.PAPER: "Paper",
}

TRANSPORTS: Dict[ExchangeName, Type[ExchangeTransport]] = {
    ExchangeName.ASTER: AsterTransport,
    ExchangeName.NEXO: NexoTransport,
    ExchangeName.SUNPERP: SunPerpTransport,
    ExchangeName.PAPER: PaperTransport,
}


class ExchangeRegistry:
    """Typed lookup from ``ExchangeName`` to the transport that serves it."""

    def __init__(self, transports: Optional[Dict[ExchangeName, ExchangeTransport]] = None):
        self._transports: Dict[ExchangeName, ExchangeTransport] = dict(transports or {})

    @classmethod
    def from_config(cls, cfg: Any) -> "ExchangeRegistry":
        exchanges = get_config_section(cfg, "exchanges")
        execution = get_config_section(cfg, "execution")
        default_wait = as_float(execution.get("fill_wait_time_s"), DEFAULT_FILL_WAIT_S)

        transports: Dict[ExchangeName, ExchangeTransport] = {}
        for name, section in exchanges.items():
            exchange = ExchangeName.parse(name)
            if exchange is None:
                logger.warning("Ignoring unknown exchange section %r", name)
                continue
            settings = ExchangeSettings.from_section(exchange.value, section, default_wait)
            if not settings.enabled:
                logger.info("[%s] disabled in configuration", exchange.label)
                continue
            transports[exchange] = TRANSPORTS[exchange](settings)
        return cls(transports)

    def get(self, name: Any) -> Optional[ExchangeTransport]:
        exchange = ExchangeName.parse(name)
        if exchange is None:
            return None
        return self._transports.get(exchange)

    def configured(self) -> Iterator[ExchangeTransport]:
        """Transports whose credentials are present."""
        for transport in self._transports.values():
            if transport.has_credentials:
                yield transport

    def __iter__(self) -> Iterator[ExchangeTransport]:
        return iter(self._transports.values())

    def __len__(self) -> int:
        return len(self._transports)

    async def readiness(self) -> Dict[str, bool]:
        items = list(self._transports.values())
        results = await asyncio.gather(
            *(transport.is_account_ready() for transport in items),
            return_exceptions=True,
        )
        ready: Dict[str, bool] = {}
        for transport, result in zip(items, results):
            if isinstance(result, BaseException):
                logger.error("[%s] account readiness check failed: %s", transport.label, result)
                ready[transport.label] = False
            else:
                ready[transport.label] = bool(result)
        return ready

    async def close(self) -> None:
        for transport in self._transports.values():
            try:
                await transport.close()
            except Exception as exc:
                logger.warning("[%s] close failed: %s", transport.label, exc)
