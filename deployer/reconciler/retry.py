"""Bounded fixed-backoff retries for eventually-consistent provider errors."""
from __future__ import annotations

import logging
import time
from typing import Callable, Collection, TypeVar

from .errors import ProviderError, TransientProviderError

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

# Codes caused by replication lag or in-flight updates.
EVENTUALLY_CONSISTENT_CODES = frozenset(
    {
        "ResourceConflictException",
        "TooManyRequestsException",
        "ThrottlingException",
        "Throttling",
        "PriorRequestNotComplete",
    }
)
# A freshly created IAM role is rejected by Lambda until it has replicated.
ROLE_PROPAGATION_CODES = EVENTUALLY_CONSISTENT_CODES | {"InvalidParameterValueException"}


def call_with_retry(
    operation: Callable[[], T],
    *,
    description: str,
    attempts: int,
    backoff_seconds: float,
    codes: Collection[str] = EVENTUALLY_CONSISTENT_CODES,
    sleep: Callable[[float], None] = time.sleep,
    resource: str | None = None,
) -> T:
    """Run ``operation``, retrying allow-listed provider codes up to ``attempts`` times.

    Any other error propagates immediately.
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            return operation()
        except ProviderError as exc:
            if exc.code not in codes:
                raise
            if attempt >= attempts:
                LOGGER.error("%s still failing with %s after %d attempts", description, exc.code, attempt)
                raise TransientProviderError(
                    exc.code, exc.provider_message, attempts=attempt, resource=resource or exc.resource
                ) from exc
            LOGGER.warning(
                "%s failed with %s (attempt %d/%d); retrying in %ss",
                description,
                exc.code,
                attempt,
                attempts,
                backoff_seconds,
            )
            sleep(backoff_seconds)


__all__ = ["EVENTUALLY_CONSISTENT_CODES", "ROLE_PROPAGATION_CODES", "call_with_retry"]
