"""
Per-IP login lockout.

State is in-process only: it resets on restart and is not shared between workers.
"""
import math
import threading
import time
from dataclasses import dataclass
from typing import Dict, Optional

from .config import settings


@dataclass
class _Record:
    attempts: int = 0
    blocked_until: float = 0.0


class LoginRateLimiter:
    def __init__(self, max_attempts: int, block_seconds: int, clock=time.time) -> None:
        self.max_attempts = max_attempts
        self.block_seconds = block_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._store: Dict[str, _Record] = {}

    def status(self, ip: str) -> dict:
        with self._lock:
            rec = self._store.get(ip)
            if not rec:
                return {"is_locked": False, "remaining_seconds": 0}
            now = self._clock()
            if now < rec.blocked_until:
                remaining = math.ceil(rec.blocked_until - now)
                return {"is_locked": True, "remaining_seconds": remaining}
            if rec.blocked_until and now >= rec.blocked_until:
                # Block expired.
                self._store.pop(ip, None)
            return {"is_locked": False, "remaining_seconds": 0}

    def remaining_block_seconds(self, ip: str) -> int:
        st = self.status(ip)
        return st["remaining_seconds"] if st["is_locked"] else 0

    def register_failure(self, ip: str) -> bool:
        """Record a failed attempt. Returns True when this failure triggers a block."""
        with self._lock:
            rec = self._store.setdefault(ip, _Record())
            rec.attempts += 1
            if rec.attempts >= self.max_attempts:
                rec.blocked_until = self._clock() + self.block_seconds
                return True
            return False

    def reset(self, ip: str) -> None:
        with self._lock:
            self._store.pop(ip, None)


login_limiter = LoginRateLimiter(
    max_attempts=settings.login_max_attempts,
    block_seconds=settings.login_block_minutes * 60,
)


def client_ip(forwarded_for: Optional[str], real_ip: Optional[str], peer: Optional[str]) -> str:
    raw = (forwarded_for or "").strip() or (real_ip or "").strip() or (peer or "").strip()
    if not raw:
        return "unknown"
    return raw.split(",", 1)[0].strip() or "unknown"
