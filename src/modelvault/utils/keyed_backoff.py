import time
from dataclasses import dataclass, field


@dataclass
class KeyedBackoff[K]:
    """Tracks exponential backoff state per key."""

    base: float = 0.5
    cap: float = 10.0
    _attempts: dict[K, int] = field(default_factory=dict, init=False)
    _last_time: dict[K, float] = field(default_factory=dict, init=False)

    def delay(self, key: K) -> float:
        attempts = self._attempts.get(key, 0)
        if attempts == 0:
            return 0.0
        return min(self.cap, self.base * (2.0 ** (attempts - 1)))

    def remaining(self, key: K) -> float:
        """Seconds until `key` may be attempted again (0 when it may proceed now)."""
        last = self._last_time.get(key)
        if last is None:
            return 0.0
        return max(0.0, self.delay(key) - (time.monotonic() - last))

    def should_proceed(self, key: K) -> bool:
        return self.remaining(key) <= 0.0

    def record_attempt(self, key: K) -> None:
        self._last_time[key] = time.monotonic()
        self._attempts[key] = self._attempts.get(key, 0) + 1

    def reset(self, key: K) -> None:
        """Forget `key` (e.g. on success)."""
        self._attempts.pop(key, None)
        self._last_time.pop(key, None)
