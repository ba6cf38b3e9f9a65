"""
Retry policy for transient source-acquisition failures.

The worker never drops a job on a transient error: it sleeps and selects
the queue head again, which is the same still-queued job. ``max_attempts``
turns the unbounded retry into a bounded one.
"""
from dataclasses import dataclass
from typing import Optional

from contract_verifier.errors import BackoffKind


@dataclass(frozen=True)
class RetryPolicy:
    network_backoff_seconds: float = 600.0   # host API unreachable / 5xx
    short_backoff_seconds: float = 60.0      # clone or checkout failed
    max_attempts: Optional[int] = None       # None → retry forever

    @classmethod
    def from_settings(cls, settings) -> "RetryPolicy":
        return cls(
            network_backoff_seconds=settings.NETWORK_BACKOFF_SECONDS,
            short_backoff_seconds=settings.SHORT_BACKOFF_SECONDS,
            max_attempts=settings.MAX_ATTEMPTS,
        )

    def backoff_for(self, kind: BackoffKind) -> float:
        if kind == BackoffKind.SHORT:
            return self.short_backoff_seconds
        return self.network_backoff_seconds

    def exhausted(self, attempts: int) -> bool:
        """True once *attempts* transient failures used up the budget."""
        return self.max_attempts is not None and attempts >= self.max_attempts
