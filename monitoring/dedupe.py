import json
import logging
import time
from typing import Any, Callable, Dict


logger = logging.getLogger(__name__)


class DedupeGuard:
    """Suppress identical alert payloads seen within a short TTL.

    The key is the compact JSON of the body in its received key order, so two
    bodies that differ only in key order count as different alerts.
    """

    def __init__(self, ttl_ms: float = 5000, clock: Callable[[], float] = time.monotonic):
        self.ttl_s = max(float(ttl_ms), 0.0) / 1000.0
        self._clock = clock
        self._expires: Dict[str, float] = {}

    @staticmethod
    def make_key(payload: Any) -> str:
        return json.dumps(payload, separators=(",", ":"), ensure_ascii=False, default=str)

    def should_process_alert(self, payload: Any) -> bool:
        now = self._clock()
        self._purge(now)
        key = self.make_key(payload)
        if key in self._expires:
            logger.info("Duplicate alert within %.1fs ignored", self.ttl_s)
            return False
        self._expires[key] = now + self.ttl_s
        return True

    def __len__(self) -> int:
        return len(self._expires)

    def _purge(self, now: float) -> None:
        expired = [key for key, expires_at in self._expires.items() if expires_at <= now]
        for key in expired:
            del self._expires[key]
