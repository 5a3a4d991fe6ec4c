"""Usage counters and shared-PIN state.

Both objects are process-local and reset on restart. All mutation goes
through the methods below, each guarded by the object's lock, so a
check-then-increment in :meth:`UsageLimiter.consume` is a single step.
"""

from __future__ import annotations

import threading
from collections import defaultdict

UsageKey = tuple[str, str]


class UsageLimiter:
    """Per-(account, PIN) usage counts against a fixed cap."""

    def __init__(self, max_uses: int = 3) -> None:
        if max_uses < 1:
            raise ValueError("max_uses must be at least 1")
        self.max_uses = max_uses
        self._counts: defaultdict[UsageKey, int] = defaultdict(int)
        self._lock = threading.Lock()

    def consume(self, account_id: str, pin: str) -> bool:
        """Count one use of ``pin`` by ``account_id``.

        Returns:
            True when the use was allowed and counted, False when the cap is
            already reached. A denied call does not increment.
        """
        key = (account_id, pin)
        with self._lock:
            if self._counts[key] >= self.max_uses:
                return False
            self._counts[key] += 1
            return True

    def usage(self, account_id: str, pin: str | None = None) -> int:
        """Return the count for one key, or the account total when pin is None."""
        with self._lock:
            if pin is not None:
                return self._counts.get((account_id, pin), 0)
            return sum(c for (acct, _), c in self._counts.items() if acct == account_id)

    def reset(self, account_id: str) -> None:
        """Drop every entry belonging to ``account_id``."""
        with self._lock:
            for key in [k for k in self._counts if k[0] == account_id]:
                del self._counts[key]

    def reset_all(self) -> None:
        with self._lock:
            self._counts.clear()


class GlobalPinState:
    """The PIN shared by all accounts while global-PIN mode is active."""

    def __init__(self, initial_pin: str) -> None:
        self._current = initial_pin
        self._lock = threading.Lock()

    @property
    def current(self) -> str:
        with self._lock:
            return self._current

    def replace(self, new_pin: str) -> str:
        """Install ``new_pin`` and return the PIN it replaced."""
        with self._lock:
            previous, self._current = self._current, new_pin
            return previous
