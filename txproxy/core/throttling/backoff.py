import random
from dataclasses import dataclass
from typing import Iterator


@dataclass(frozen=True)
class ExponentialBackoff:
    """
    Reconnect policy of a client connection to the proxy.

    `delays()` yields the pauses to take between connection attempts,
    `attempts - 1` of them: the n-th pause is `initial * factor ** n`,
    capped at `maximum`, plus a random jitter in `[0, jitter]` so that
    clients cut off together do not all come back at the same instant.
    Each call starts a fresh sequence.
    """

    initial: float = 0.5
    maximum: float = 30.0
    factor: float = 2.0
    jitter: float = 1.2
    attempts: int = 3

    def __post_init__(self) -> None:
        if self.attempts < 1:
            raise ValueError("attempts must be at least 1")

    def delays(self) -> Iterator[float]:
        delay = self.initial
        for _ in range(self.attempts - 1):
            yield delay + (random.uniform(0, self.jitter) if self.jitter > 0 else 0.0)
            delay = min(delay * self.factor, self.maximum)
