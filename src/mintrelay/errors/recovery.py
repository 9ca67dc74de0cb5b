"""Retry and backoff policies for the relayer."""

from dataclasses import dataclass


@dataclass
class RetryPolicy:
    """Bounded exponential backoff.

    ``max_retries`` is the total number of attempts. ``get_delay(attempt)`` is
    the pause after failed attempt ``attempt`` (numbered from 1), so with the
    defaults the pauses are 1s, 2s, 4s, ...
    """

    max_retries: int = 5
    base_delay: float = 1.0
    exponential_base: float = 2.0

    @classmethod
    def from_milliseconds(cls, max_retries: int, base_ms: int, **kwargs) -> "RetryPolicy":
        return cls(max_retries=max_retries, base_delay=base_ms / 1000.0, **kwargs)

    def get_delay(self, attempt: int) -> float:
        """Get delay after the given failed attempt."""
        if attempt <= 0:
            return 0.0
        return self.base_delay * (self.exponential_base ** (attempt - 1))

    def should_retry(self, attempt: int) -> bool:
        """Whether another attempt follows failed attempt ``attempt``."""
        return attempt < self.max_retries
