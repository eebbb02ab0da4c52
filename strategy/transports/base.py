import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from config.utils import as_bool, as_float
from strategy.execution_types import Alert, OrderInstruction, OrderStatus, OrderTicket, Position


logger = logging.getLogger(__name__)

DEFAULT_FILL_WAIT_S = 300.0


class ExchangeNotConfiguredError(RuntimeError):
    def __init__(self, exchange: str, missing: Tuple[str, ...]):
        self.exchange = exchange
        self.missing = missing
        super().__init__(f"{exchange} is missing credentials: {', '.join(missing)}")


@dataclass
class ExchangeSettings:
    """Per-exchange settings resolved from the ``exchanges.<name>`` config section."""

    name: str
    api_key: Optional[str] = None
    api_secret: Optional[str] = None
    base_url: Optional[str] = None
    mode: str = ""
    fill_wait_s: float = DEFAULT_FILL_WAIT_S
    enabled: bool = True
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def only_sell(self) -> bool:
        return self.mode.strip().lower() == "onlysell"

    @classmethod
    def from_section(
        cls,
        name: str,
        section: Dict[str, Any],
        default_fill_wait_s: float = DEFAULT_FILL_WAIT_S,
    ) -> "ExchangeSettings":
        section = dict(section or {})
        known = {"api_key", "api_secret", "base_url", "mode", "fill_wait_time_s", "enabled"}
        return cls(
            name=name,
            api_key=section.get("api_key") or None,
            api_secret=section.get("api_secret") or None,
            base_url=section.get("base_url") or None,
            mode=str(section.get("mode") or ""),
            fill_wait_s=as_float(section.get("fill_wait_time_s"), default_fill_wait_s),
            enabled=as_bool(section.get("enabled"), True),
            extra={key: value for key, value in section.items() if key not in known},
        )


class ExchangeTransport(ABC):
    """Exchange adapter boundary: positions, balances, order submit/status/cancel.

    Everything above this class works on normalized ``Position`` and
    ``OrderTicket`` values; wire formats stay inside the subclasses.
    """

    label: str = "Exchange"
    required_credentials: Tuple[str, ...] = ("api_key", "api_secret")

    def __init__(self, settings: ExchangeSettings):
        self.settings = settings
        missing = self.missing_credentials()
        if missing:
            logger.warning("[%s] Credentials are not set: %s", self.label, ", ".join(missing))

    @property
    def name(self) -> str:
        return self.settings.name

    @property
    def only_sell(self) -> bool:
        return self.settings.only_sell

    @property
    def fill_wait_s(self) -> float:
        return self.settings.fill_wait_s

    def missing_credentials(self) -> Tuple[str, ...]:
        return tuple(key for key in self.required_credentials if not getattr(self.settings, key, None))

    @property
    def has_credentials(self) -> bool:
        return not self.missing_credentials()

    def ensure_configured(self) -> None:
        missing = self.missing_credentials()
        if missing:
            raise ExchangeNotConfiguredError(self.label, missing)

    def normalize_market(self, market: str) -> str:
        return market

    async def resolve_order_size(self, alert: Alert) -> float:
        """Resolve size / sizeUsd / sizeByLeverage (in that order), doubling reverse orders."""
        if alert.size:
            size = alert.size
        elif alert.size_usd:
            size = alert.size_usd / alert.price
        elif alert.size_by_leverage:
            equity = await self.fetch_equity()
            if equity is None:
                raise RuntimeError(f"{self.label} equity unavailable for leverage sizing")
            size = equity * alert.size_by_leverage / alert.price
        else:
            size = 0.0
        if alert.reverse:
            size *= 2
        return size

    @abstractmethod
    async def is_account_ready(self) -> bool:
        ...

    @abstractmethod
    async def fetch_open_positions(self) -> List[Position]:
        ...

    @abstractmethod
    async def fetch_equity(self) -> Optional[float]:
        ...

    @abstractmethod
    async def place_limit_order(self, instruction: OrderInstruction, alert: Alert) -> OrderTicket:
        ...

    @abstractmethod
    async def fetch_order_status(self, ticket: OrderTicket) -> OrderStatus:
        ...

    @abstractmethod
    async def cancel_order(self, ticket: OrderTicket) -> None:
        ...

    async def close(self) -> None:
        return None

    @staticmethod
    def _as_float(value: Any) -> Optional[float]:
        return as_float(value)
