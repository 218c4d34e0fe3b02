"""Generic discover -> diff -> create/update -> settle reconciliation protocol."""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Collection, Generic, Mapping, TypeVar

from . import metrics, retry, waiter
from .errors import DependencyError
from .ownership import OwnershipPolicy
from .settings import DeploySettings
from .types import CREATED, UNCHANGED, UPDATED, PendingOperation, ReconciliationResult, RemoteResourceState

LOGGER = logging.getLogger(__name__)

C = TypeVar("C")
T = TypeVar("T")


@dataclass
class DeployContext:
    """Per-run state handed to every reconciler.

    Holds the cloud client, the ownership policy, the cache of remote states
    fetched during this run and the results of already-completed stages.
    """

    client: Any
    settings: DeploySettings = field(default_factory=DeploySettings)
    ownership: OwnershipPolicy | None = None
    sleep: Callable[[float], None] = time.sleep
    cache: dict[tuple[str, str], RemoteResourceState | None] = field(default_factory=dict)
    outputs: dict[str, ReconciliationResult] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.ownership is None:
            self.ownership = OwnershipPolicy(identifiers=tuple(self.settings.manager_identifiers))

    def lookup(self, kind: str, key: str, loader: Callable[[], RemoteResourceState | None]) -> RemoteResourceState | None:
        cache_key = (kind, key)
        if cache_key not in self.cache:
            self.cache[cache_key] = loader()
        return self.cache[cache_key]

    def remember(self, kind: str, key: str, state: RemoteResourceState | None) -> None:
        self.cache[(kind, key)] = state

    def require(self, stage: str, *, needed_by: str, resource: str | None = None) -> ReconciliationResult:
        """Return the result of ``stage`` or fail because it is unavailable."""
        result = self.outputs.get(stage)
        if result is None:
            raise DependencyError(
                f"The '{needed_by}' stage requires the '{stage}' stage, which has no remote resource yet",
                resource=resource,
            )
        return result

    def retry(
        self,
        operation: Callable[[], T],
        *,
        description: str,
        codes: Collection[str] = retry.EVENTUALLY_CONSISTENT_CODES,
        resource: str | None = None,
    ) -> T:
        return retry.call_with_retry(
            operation,
            description=description,
            attempts=self.settings.retry_attempts,
            backoff_seconds=self.settings.retry_backoff_seconds,
            codes=codes,
            sleep=self.sleep,
            resource=resource,
        )

    def wait(self, operation: PendingOperation) -> None:
        waiter.wait(operation, sleep=self.sleep)


class Reconciler(Generic[C]):
    """One resource kind. Concrete reconcilers override the hooks below."""

    kind = "resource"
    requires_ownership = True
    legacy_identifiers: tuple[str, ...] = ()

    def key(self, config: C) -> str:
        return config.domain_name  # type: ignore[attr-defined]

    def discover(self, context: DeployContext, config: C) -> RemoteResourceState | None:
        raise NotImplementedError

    def diff(self, context: DeployContext, config: C, state: RemoteResourceState) -> list[str]:
        """Names of the desired fields that differ from ``state``."""
        return []

    def create(self, context: DeployContext, config: C) -> RemoteResourceState:
        raise NotImplementedError

    def update(
        self, context: DeployContext, config: C, state: RemoteResourceState, changes: list[str]
    ) -> RemoteResourceState:
        raise NotImplementedError

    def settle(
        self, context: DeployContext, config: C, state: RemoteResourceState, action: str
    ) -> PendingOperation | None:
        return None

    def outputs(self, state: RemoteResourceState) -> Mapping[str, Any]:
        return dict(state.attributes)


def reconcile(reconciler: Reconciler[C], config: C, context: DeployContext) -> ReconciliationResult:
    """Converge one resource towards ``config`` and describe what was done."""
    key = reconciler.key(config)
    kind = reconciler.kind
    start = time.perf_counter()
    LOGGER.info("Checking the %s %s...", kind, key)

    state = context.lookup(kind, key, lambda: reconciler.discover(context, config))
    if state is None:
        LOGGER.info("Creating the %s %s...", kind, key)
        state = reconciler.create(context, config)
        action = CREATED
    else:
        if reconciler.requires_ownership:
            policy = context.ownership.with_legacy(*reconciler.legacy_identifiers)
            policy.ensure_owned(state, kind=kind, resource=key)
        changes = reconciler.diff(context, config, state)
        if changes:
            LOGGER.info("Updating the %s %s (%s)...", kind, key, ", ".join(changes))
            state = reconciler.update(context, config, state, changes)
            action = UPDATED
        else:
            LOGGER.info("The %s %s is unchanged", kind, key)
            action = UNCHANGED
    context.remember(kind, key, state)

    operation = reconciler.settle(context, config, state, action)
    if operation is not None:
        context.wait(operation)

    duration_ms = (time.perf_counter() - start) * 1000
    metrics.put_metric(resource=key, stage=kind, result=action, latency_ms=duration_ms)
    return ReconciliationResult(
        resource=key,
        kind=kind,
        action=action,
        identifier=state.identifier,
        attributes=reconciler.outputs(state),
        duration_ms=duration_ms,
    )


def step_result(
    *,
    resource: str,
    kind: str,
    action: str,
    identifier: str,
    started: float,
    attributes: Mapping[str, Any] | None = None,
) -> ReconciliationResult:
    """Result of a sub-step that is not a single remote resource (content, triggers...)."""
    duration_ms = (time.perf_counter() - started) * 1000
    metrics.put_metric(resource=resource, stage=kind, result=action, latency_ms=duration_ms)
    return ReconciliationResult(
        resource=resource,
        kind=kind,
        action=action,
        identifier=identifier,
        attributes=dict(attributes or {}),
        duration_ms=duration_ms,
    )


def combine_actions(actions: Collection[str]) -> str:
    """Collapse several sub-step actions into the one reported for a stage."""
    if CREATED in actions:
        return CREATED
    if UPDATED in actions:
        return UPDATED
    return UNCHANGED


__all__ = ["DeployContext", "Reconciler", "combine_actions", "reconcile", "step_result"]
