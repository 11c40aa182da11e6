"""Exponential backoff with jitter."""

import random
from dataclasses import dataclass, field


@dataclass
class BackoffPolicy:
    """Retry schedule shared by every scrape.

    The delay before retry *n* (1-based, counting failed attempts) is
    ``base_delay * 2 ** (n - 1)`` plus up to ``max_jitter`` seconds of
    random jitter, so many probes failing together do not retry in lockstep.

    Attributes:
        max_attempts: Total attempts, including the first.
        base_delay: Delay after the first failed attempt, in seconds.
        max_jitter: Upper bound of the random jitter, in seconds.
        rng: Random source; pass a seeded ``random.Random`` in tests.
    """

    max_attempts: int = 5
    base_delay: float = 0.5
    max_jitter: float = 0.25
    rng: random.Random = field(default_factory=random.Random, repr=False)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.base_delay < 0 or self.max_jitter < 0:
            raise ValueError("base_delay and max_jitter must not be negative")

    def base(self, attempt: int) -> float:
        """Delay without jitter after failed attempt *attempt*."""
        return self.base_delay * 2 ** (attempt - 1)

    def delay(self, attempt: int) -> float:
        """Delay with jitter after failed attempt *attempt*."""
        return self.base(attempt) + self.rng.uniform(0, self.max_jitter)
