import time
from typing import Optional


def time_now_ms() -> int:
    return int(time.time() * 1000)


def time_now_us() -> int:
    return time.time_ns() // 1000


class NonceFactory:
    """Strictly increasing microsecond nonces.

    Two calls inside the same microsecond still get distinct values: the
    factory never hands out a value lower than or equal to the last one.
    """

    def __init__(self) -> None:
        self._last: int = 0

    def next(self, override: Optional[str] = None) -> str:
        if override:
            override = str(override)
            if override.isdigit():
                self._last = max(self._last, int(override))
            return override
        now = time_now_us()
        if now <= self._last:
            now = self._last + 1
        self._last = now
        return str(now)

    @property
    def last(self) -> int:
        return self._last
