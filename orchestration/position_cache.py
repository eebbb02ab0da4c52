import asyncio
import time
from typing import Dict, Iterable, Iterator, Optional, Tuple

from strategy.execution_types import Position


class PositionSnapshot:
    """Read-only view of one exchange's open positions at a point in time."""

    __slots__ = ("_positions", "taken_at")

    def __init__(self, positions: Iterable[Position] = (), taken_at: Optional[float] = None):
        self._positions: Tuple[Position, ...] = tuple(positions)
        self.taken_at = taken_at

    def find(self, market: str) -> Optional[Position]:
        for position in self._positions:
            if position.market == market:
                return position
        return None

    def __iter__(self) -> Iterator[Position]:
        return iter(self._positions)

    def __len__(self) -> int:
        return len(self._positions)

    def __repr__(self) -> str:
        return f"PositionSnapshot({len(self._positions)} positions)"


class PositionCache:
    """Per-exchange open positions plus the lock that serializes order placement.

    The poller replaces an exchange's list wholesale; readers only ever see
    immutable snapshots.
    """

    def __init__(self):
        self._snapshots: Dict[str, PositionSnapshot] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def replace(self, exchange: str, positions: Iterable[Position]) -> PositionSnapshot:
        snapshot = PositionSnapshot(positions, taken_at=time.time())
        self._snapshots[exchange] = snapshot
        return snapshot

    def snapshot(self, exchange: str) -> PositionSnapshot:
        snapshot = self._snapshots.get(exchange)
        return snapshot if snapshot is not None else PositionSnapshot()

    def updated_at(self, exchange: str) -> Optional[float]:
        snapshot = self._snapshots.get(exchange)
        return snapshot.taken_at if snapshot is not None else None

    def lock(self, exchange: str) -> asyncio.Lock:
        lock = self._locks.get(exchange)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[exchange] = lock
        return lock

    def exchanges(self) -> Tuple[str, ...]:
        return tuple(self._snapshots)
