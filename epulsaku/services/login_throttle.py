"""Per-IP password login throttle"""

import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Set

from epulsaku.config import settings


@dataclass
class _Attempt:
    count: int
    expiry: float


class LoginThrottle:
    """
    In-process failure counter keyed by client IP.

    Every failure pushes the expiry window forward from the moment it
    happened; once `max_attempts` failures accumulate inside an unexpired
    window further logins from that IP are refused until it lapses. Unrelated
    to the PIN lockout, which is stored per account.
    """

    def __init__(
        self,
        max_attempts: Optional[int] = None,
        window_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_attempts = max_attempts or settings.login_max_attempts
        self.window_seconds = window_seconds or settings.login_lockout_seconds
        self.clock = clock
        self._attempts: Dict[str, _Attempt] = {}
        self._next_sweep: Optional[float] = None
        self._lock = threading.Lock()

    @property
    def tracked_ips(self) -> Set[str]:
        with self._lock:
            return set(self._attempts)

    def seconds_locked(self, ip: str) -> int:
        """Remaining lockout in whole seconds, 0 when logins are allowed"""
        with self._lock:
            attempt = self._attempts.get(ip)
            if attempt is None:
                return 0
            now = self.clock()
            if now >= attempt.expiry:
                del self._attempts[ip]
                return 0
            if attempt.count >= self.max_attempts:
                return max(1, math.ceil(attempt.expiry - now))
            return 0

    def record_failure(self, ip: str) -> int:
        with self._lock:
            now = self.clock()
            self._sweep_expired(now)
            attempt = self._attempts.get(ip)
            count = attempt.count + 1 if attempt and now < attempt.expiry else 1
            self._attempts[ip] = _Attempt(count=count, expiry=now + self.window_seconds)
            return count

    def reset(self, ip: str) -> None:
        with self._lock:
            self._attempts.pop(ip, None)

    def _sweep_expired(self, now: float) -> None:
        """Drop lapsed entries, at most once per window; caller holds the lock"""
        if self._next_sweep is not None and now < self._next_sweep:
            return
        self._next_sweep = now + self.window_seconds
        for ip in [ip for ip, attempt in self._attempts.items() if now >= attempt.expiry]:
            del self._attempts[ip]
