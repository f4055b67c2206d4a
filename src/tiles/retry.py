from __future__ import annotations

from dataclasses import dataclass

from shared.constants import HTTP_BACKOFF_INITIAL_MS, HTTP_RETRIES_DEFAULT


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff for transient tile failures.

    ``attempt`` is the zero-based index of the attempt that just failed; the
    delay before the next one is ``initial_backoff * 2 ** attempt``.
    """

    max_attempts: int = HTTP_RETRIES_DEFAULT
    initial_backoff: float = HTTP_BACKOFF_INITIAL_MS / 1000.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            msg = 'max_attempts must be >= 1'
            raise ValueError(msg)
        if self.initial_backoff < 0:
            msg = 'initial_backoff must not be negative'
            raise ValueError(msg)

    @classmethod
    def from_settings(cls, settings) -> RetryPolicy:
        return cls(
            max_attempts=settings.retry_max,
            initial_backoff=settings.backoff_initial_s,
        )

    def should_retry(self, attempt: int) -> bool:
        return attempt + 1 < self.max_attempts

    def delay_for(self, attempt: int) -> float:
        return self.initial_backoff * (2 ** max(0, attempt))
