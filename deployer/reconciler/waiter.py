"""Blocking poll-with-timeout helper for asynchronous provider operations."""
from __future__ import annotations

import logging
import time
from typing import Callable

from .errors import OperationFailedError, OperationTimeoutError
from .types import FAILED, SUCCEEDED, OperationStatus, PendingOperation

LOGGER = logging.getLogger(__name__)

SECOND_MS = 1000
MINUTE_MS = 60 * SECOND_MS
HOUR_MS = 60 * MINUTE_MS

# (poll interval, max wait) per operation family.
DNS_CHANGE = (5 * SECOND_MS, 3 * MINUTE_MS)
CERTIFICATE_VALIDATION_RECORD = (5 * SECOND_MS, 1 * MINUTE_MS)
CERTIFICATE_ISSUANCE = (10 * SECOND_MS, 1 * HOUR_MS)
DISTRIBUTION_DEPLOYMENT = (30 * SECOND_MS, 1 * HOUR_MS)
DISTRIBUTION_INVALIDATION = (10 * SECOND_MS, 10 * MINUTE_MS)
FUNCTION_UPDATE = (2 * SECOND_MS, 5 * MINUTE_MS)
GATEWAY_DOMAIN = (5 * SECOND_MS, 10 * MINUTE_MS)


def pending(
    description: str,
    check: Callable[[], OperationStatus],
    timing: tuple[int, int],
    *,
    resource: str | None = None,
) -> PendingOperation:
    poll_interval_ms, max_wait_ms = timing
    return PendingOperation(
        description=description,
        check=check,
        poll_interval_ms=poll_interval_ms,
        max_wait_ms=max_wait_ms,
        resource=resource,
    )


def wait(operation: PendingOperation, *, sleep: Callable[[float], None] = time.sleep) -> OperationStatus:
    """Poll ``operation`` until it reaches a terminal state.

    Every poll is preceded by a full ``poll_interval_ms`` sleep. Elapsed time is
    the accumulated sleep, so slow provider responses never shorten the
    interval. Raises ``OperationFailedError`` on terminal failure and
    ``OperationTimeoutError`` once ``max_wait_ms`` has been waited.
    """
    if operation.poll_interval_ms <= 0:
        raise ValueError("poll_interval_ms must be positive")
    LOGGER.info("Waiting for %s...", operation.description)
    elapsed_ms = 0
    polls = 0
    while elapsed_ms < operation.max_wait_ms:
        sleep(operation.poll_interval_ms / 1000)
        elapsed_ms += operation.poll_interval_ms
        polls += 1
        status = operation.check()
        if status.state == SUCCEEDED:
            LOGGER.debug("%s settled after %d polls", operation.description, polls)
            return status
        if status.state == FAILED:
            LOGGER.error("%s failed: %s", operation.description, status.detail)
            raise OperationFailedError(
                f"{operation.description} failed: {status.detail or 'no detail provided'}",
                resource=operation.resource,
            )
    raise OperationTimeoutError(
        f"{operation.description} uncompleted after {elapsed_ms / 1000:g} seconds",
        elapsed_ms=elapsed_ms,
        resource=operation.resource,
    )


__all__ = ["pending", "wait"]
