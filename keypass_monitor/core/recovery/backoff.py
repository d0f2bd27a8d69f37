"""
Retry delay schedules.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class BackoffPolicy:
    """Delay schedule between connection attempts and transaction retries."""

    max_retries: int = 3
    base_delay_seconds: float = 5.0
    max_delay_seconds: float = 30.0
    multiplier: float = 2.0

    def __post_init__(self):
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.base_delay_seconds < 0 or self.max_delay_seconds < 0:
            raise ValueError("retry delays must be >= 0")
        if self.multiplier < 1:
            raise ValueError("multiplier must be >= 1")

    def exponential_delay(self, attempt: int) -> float:
        """Delay after a failed connection attempt (0-based), capped."""
        delay = self.base_delay_seconds * (self.multiplier ** attempt)
        return min(self.max_delay_seconds, delay)

    def linear_delay(self, retry_count: int) -> float:
        """Delay before transaction retry number ``retry_count`` (1-based)."""
        return self.base_delay_seconds * retry_count

    @classmethod
    def from_settings(cls, settings) -> "BackoffPolicy":
        return cls(
            max_retries=settings.max_retries,
            base_delay_seconds=settings.base_retry_delay_ms / 1000,
            max_delay_seconds=settings.max_retry_delay_ms / 1000,
            multiplier=settings.retry_backoff_multiplier,
        )
