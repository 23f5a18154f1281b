import threading
import time
from dataclasses import dataclass
from typing import Callable


@dataclass(frozen=True)
class Token:
    value: str
    expires_at_ms: int
    lifetime_ms: int


class TokenCache:
    """Bearer token held by one provider client.

    A token is served until ``expiry - buffer``. The buffer never exceeds
    half the token's lifetime, so short-lived tokens are still reused.
    Concurrent refreshes are allowed to race; the last one to finish wins.
    """

    def __init__(self, buffer_seconds: int = 300, clock: Callable[[], float] = time.time):
        self.buffer_ms = buffer_seconds * 1000
        self._clock = clock
        self._token: Token | None = None
        self._lock = threading.Lock()

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def get(self) -> str | None:
        with self._lock:
            token = self._token
        if token is None:
            return None
        buffer_ms = min(self.buffer_ms, token.lifetime_ms // 2)
        if self._now_ms() >= token.expires_at_ms - buffer_ms:
            return None
        return token.value

    def store(self, value: str, expires_in_seconds: float) -> Token:
        lifetime_ms = int(expires_in_seconds * 1000)
        token = Token(value=value, expires_at_ms=self._now_ms() + lifetime_ms, lifetime_ms=lifetime_ms)
        with self._lock:
            self._token = token
        return token

    def clear(self) -> None:
        with self._lock:
            self._token = None
