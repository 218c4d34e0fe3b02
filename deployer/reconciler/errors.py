"""Error taxonomy raised by reconcilers, the waiter and the orchestrator."""
from __future__ import annotations


class DeploymentError(Exception):
    """Base class for every fatal reconciliation error."""

    def __init__(self, message: str, *, resource: str | None = None):
        super().__init__(message)
        self.resource = resource

    def __str__(self) -> str:
        message = super().__str__()
        if self.resource and self.resource not in message:
            return f"{message} (resource: '{self.resource}')"
        return message


class ConfigurationError(DeploymentError):
    """Invalid or incomplete desired configuration, detected before any remote call."""


class OwnershipConflictError(DeploymentError):
    """A pre-existing resource does not carry a recognized managed-by tag."""

    def __init__(self, message: str, *, resource: str | None = None, identifier: str):
        super().__init__(message, resource=resource)
        self.identifier = identifier


class ProviderError(DeploymentError):
    """Unclassified provider failure carrying the provider code and message."""

    def __init__(self, code: str, message: str, *, resource: str | None = None):
        super().__init__(f"{code}: {message}", resource=resource)
        self.code = code
        self.provider_message = message


class TransientProviderError(ProviderError):
    """An eventually-consistent error that did not clear within the retry budget."""

    def __init__(self, code: str, message: str, *, attempts: int, resource: str | None = None):
        super().__init__(code, f"{message} (still failing after {attempts} attempts)", resource=resource)
        self.attempts = attempts


class OperationTimeoutError(DeploymentError):
    """An asynchronous provider operation did not settle in time."""

    def __init__(self, message: str, *, elapsed_ms: int, resource: str | None = None):
        super().__init__(message, resource=resource)
        self.elapsed_ms = elapsed_ms


class OperationFailedError(DeploymentError):
    """An asynchronous provider operation reached a terminal failure state."""


class ListingOverflowError(DeploymentError):
    """A paginated listing has more entries than the engine is willing to enumerate."""


class DependencyError(DeploymentError):
    """A stage needs the identifier of another stage that is not available."""


class StageFailedError(DeploymentError):
    """Wraps the first fatal error of a deployment with the failing stage name."""

    def __init__(self, stage: str, cause: DeploymentError, *, resource: str | None = None):
        super().__init__(f"Stage '{stage}' failed: {cause}", resource=resource or cause.resource)
        self.stage = stage
        self.cause = cause


__all__ = [
    "ConfigurationError",
    "DependencyError",
    "DeploymentError",
    "ListingOverflowError",
    "OperationFailedError",
    "OperationTimeoutError",
    "OwnershipConflictError",
    "ProviderError",
    "StageFailedError",
    "TransientProviderError",
]
