"""Bounded retry combinator used by convergence polling."""

import time
from dataclasses import dataclass
from typing import Any, Callable, Optional, Tuple, Type


@dataclass
class RetryOutcome:
    succeeded: bool
    attempts: int
    last_value: Any = None
    last_error: Optional[BaseException] = None


def retry(
    attempts: int,
    interval: float,
    predicate: Callable[[], Any],
    retry_on: Tuple[Type[BaseException], ...] = (),
    on_attempt_failed: Optional[Callable[[int, Any, Optional[BaseException]], None]] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> RetryOutcome:
    """Call ``predicate`` until it returns a truthy value, at most ``attempts`` times.

    Exceptions listed in ``retry_on`` count as failed attempts; anything else
    propagates. ``interval`` seconds are slept between attempts but never after
    the last one, so the call is bounded by ``attempts`` predicate calls plus
    ``(attempts - 1) * interval`` of sleeping.
    """
    if attempts < 1:
        raise ValueError("attempts must be at least 1")

    last_value: Any = None
    last_error: Optional[BaseException] = None

    for attempt in range(1, attempts + 1):
        try:
            last_value = predicate()
            last_error = None
        except retry_on as exc:
            last_value = None
            last_error = exc

        if last_error is None and last_value:
            return RetryOutcome(True, attempt, last_value=last_value)

        if on_attempt_failed is not None:
            on_attempt_failed(attempt, last_value, last_error)

        if attempt < attempts:
            sleep(interval)

    return RetryOutcome(False, attempts, last_value=last_value, last_error=last_error)
