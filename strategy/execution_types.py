from dataclasses import dataclass, field
from typing import Any, Dict, Optional


BUY = "buy"
SELL = "sell"
LONG = "long"
SHORT = "short"


@dataclass(frozen=True)
class Alert:
    """A validated inbound trading alert."""

    exchange: str
    strategy: str
    market: str
    order: str
    price: float
    reverse: bool = False
    size: Optional[float] = None
    size_usd: Optional[float] = None
    size_by_leverage: Optional[float] = None
    slippage_pct: float = 0.0
    order_mode: str = ""
    new_position_size: Optional[float] = None
    direction: Optional[str] = None
    min_profit: Optional[float] = None
    passphrase: Optional[str] = None
    collateral: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @property
    def is_buy(self) -> bool:
        return self.order == BUY

    @property
    def is_full_mode(self) -> bool:
        return self.order_mode == "full"

    @property
    def targets_flat(self) -> bool:
        return self.new_position_size is not None and self.new_position_size == 0

    @property
    def is_closing(self) -> bool:
        """True when the alert reduces a position in its stated direction."""
        return (self.order == SELL and self.direction == LONG) or (
            self.order == BUY and self.direction == SHORT
        )


@dataclass(frozen=True)
class Position:
    """Adapter-normalized open position: magnitude plus side."""

    market: str
    side: str
    size: float
    entry_price: float
    status: str = "OPEN"
    max_size: Optional[str] = None
    exit_price: Optional[str] = None
    created_at: Optional[str] = None
    created_at_height: Optional[str] = None
    closed_at: Optional[str] = None
    sum_open: Optional[str] = None
    sum_close: Optional[str] = None
    net_funding: Optional[str] = None
    subaccount_number: Optional[int] = None

    def opposes(self, order_side: str) -> bool:
        """True when an order on ``order_side`` would reduce this position."""
        return (order_side == SELL and self.side == LONG) or (
            order_side == BUY and self.side == SHORT
        )

    @classmethod
    def from_signed(cls, market: str, amount: float, entry_price: float, **extra: Any) -> "Position":
        side = LONG if amount >= 0 else SHORT
        return cls(market=market, side=side, size=abs(amount), entry_price=entry_price, **extra)


@dataclass(frozen=True)
class OrderInstruction:
    market: str
    side: str
    size: float
    limit_price: float
    reference_price: float
    slippage_pct: float
    direction: Optional[str] = None


@dataclass
class OrderTicket:
    """Normalized view of an order acknowledgement across live and paper flows."""

    exchange: str
    market: str
    side: str
    quantity: float
    price: Optional[float] = None
    status: Optional[str] = None
    order_id: Optional[str] = None
    client_order_id: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def id(self) -> Optional[str]:
        if self.order_id:
            return self.order_id
        if self.client_order_id:
            return self.client_order_id
        fallback = self.raw.get("id")
        if fallback is not None:
            return str(fallback)
        return None


_FILLED_STATUSES = {"closed", "filled"}


@dataclass(frozen=True)
class OrderStatus:
    status: Optional[str] = None
    quantity: float = 0.0
    filled_qty: float = 0.0

    @property
    def is_filled(self) -> bool:
        if self.status and self.status.lower() in _FILLED_STATUSES:
            return True
        return self.quantity > 0 and self.filled_qty >= self.quantity
