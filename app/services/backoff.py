"""
Retry backoff policy.

Maps the number of failed attempts so far to the delay before the next
one. Attempts beyond the end of the table reuse its last entry.
"""
from typing import Sequence

# Delays in seconds: 1s, 5s, 25s
DEFAULT_BACKOFF_DELAYS = (1, 5, 25)


def validate_delays(delays: Sequence[float]) -> None:
    """Raise ValueError unless delays is a non-empty, non-decreasing table."""
    if not delays:
        raise ValueError("Backoff table must not be empty")
    if any(d < 0 for d in delays):
        raise ValueError("Backoff delays must not be negative")
    if any(later < earlier for earlier, later in zip(delays, delays[1:])):
        raise ValueError("Backoff delays must be non-decreasing")


def backoff_delay(attempt_number: int, delays: Sequence[float] = DEFAULT_BACKOFF_DELAYS) -> float:
    """
    Return the delay in seconds before retrying after attempt_number failures.

    Args:
        attempt_number: Count of failed attempts so far (1-indexed)
        delays: Backoff table, non-empty and non-decreasing

    Returns:
        Delay in seconds
    """
    if attempt_number < 1:
        raise ValueError(f"attempt_number must be >= 1, got {attempt_number}")
    validate_delays(delays)
    return delays[min(attempt_number - 1, len(delays) - 1)]
