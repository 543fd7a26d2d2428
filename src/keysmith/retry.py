from dataclasses import dataclass, field
from typing import Callable

# statuses that fail the whole run instead of being retried
NON_RETRIABLE_STATUSES: "frozenset[int]" = frozenset({401, 403})


def exponential_backoff(base: "float") -> "Callable[[int], float]":
    """
    base, 2*base, 4*base, ... for attempt 1, 2, 3, ...
    """

    def _delay(attempt: "int") -> "float":
        return base * (2 ** (attempt - 1))

    return _delay


def linear_backoff(step: "float") -> "Callable[[int], float]":
    """
    step, 2*step, 3*step, ... for attempt 1, 2, 3, ...
    """

    def _delay(attempt: "int") -> "float":
        return step * attempt

    return _delay


def _default_retriable(status: "int | None") -> "bool":
    return status not in NON_RETRIABLE_STATUSES


@dataclass(frozen=True)
class RetryPolicy:
    """
    RetryPolicy describes how a failing call is retried: how many
    attempts it gets, how long to wait after a given attempt, and
    which HTTP statuses are worth another try (None for transport
    failures).
    """

    max_attempts: "int" = 3
    backoff: "Callable[[int], float]" = field(default=exponential_backoff(1.0))
    retriable: "Callable[[int | None], bool]" = field(default=_default_retriable)

    def delay(self, attempt: "int") -> "float":
        return self.backoff(attempt)

    def is_retriable(self, status: "int | None") -> "bool":
        return self.retriable(status)

    def should_retry(self, attempt: "int", status: "int | None") -> "bool":
        """
        True if another attempt may follow the given (1-based) one.
        """
        return attempt < self.max_attempts and self.is_retriable(status)


# generic failures: 1s, 2s, 4s
TRANSPORT_POLICY = RetryPolicy(max_attempts=3, backoff=exponential_backoff(1.0))
# rate limits need longer cooldowns: 5s, 10s, 15s
RATE_LIMIT_POLICY = RetryPolicy(max_attempts=3, backoff=linear_backoff(5.0))
