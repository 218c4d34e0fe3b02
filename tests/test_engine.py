"""Tests for the generic reconciliation protocol and the ownership policy."""
from __future__ import annotations

import json
import logging

import pytest

from deployer.reconciler.engine import DeployContext, Reconciler, combine_actions, reconcile
from deployer.reconciler.errors import DependencyError, OwnershipConflictError
from deployer.reconciler.ownership import OwnershipPolicy, tags_from_tag_set
from deployer.reconciler.settings import DeploySettings
from deployer.reconciler.types import (
    CREATED,
    MANAGED_BY_TAG,
    SUCCEEDED,
    UNCHANGED,
    UPDATED,
    OperationStatus,
    PendingOperation,
    RemoteResourceState,
)


class FakeQueue:
    """In-memory resource keyed by name, carrying a size and tags."""

    def __init__(self):
        self.items = {}
        self.writes = []

    def get(self, name):
        return self.items.get(name)

    def put(self, name, size, tags=None):
        self.writes.append((name, size))
        current = self.items.get(name, {"tags": {}})
        self.items[name] = {"size": size, "tags": dict(tags or current["tags"])}


class QueueConfig:
    def __init__(self, domain_name, size):
        self.domain_name = domain_name
        self.size = size


class QueueReconciler(Reconciler[QueueConfig]):
    kind = "queue"

    def __init__(self):
        self.settled = []

    def _state(self, name, item):
        return RemoteResourceState(identifier=f"queue:{name}", name=name, tags=item["tags"], attributes={"size": item["size"]})

    def discover(self, context, config):
        item = context.client.get(config.domain_name)
        return None if item is None else self._state(config.domain_name, item)

    def diff(self, context, config, state):
        return ["size"] if state.attributes["size"] != config.size else []

    def create(self, context, config):
        context.client.put(config.domain_name, config.size, tags=context.ownership.creation_tags())
        return self._state(config.domain_name, context.client.get(config.domain_name))

    def update(self, context, config, state, changes):
        context.client.put(config.domain_name, config.size)
        return self._state(config.domain_name, context.client.get(config.domain_name))

    def settle(self, context, config, state, action):
        if action == UNCHANGED:
            return None
        self.settled.append(action)
        return PendingOperation(
            description="queue",
            check=lambda: OperationStatus(SUCCEEDED),
            poll_interval_ms=10,
            max_wait_ms=100,
        )


def _context(client):
    return DeployContext(client=client, settings=DeploySettings(), sleep=lambda _seconds: None)


def test_second_run_is_unchanged():
    client = FakeQueue()
    reconciler = QueueReconciler()

    first = reconcile(reconciler, QueueConfig("jobs.example.com", 3), _context(client))
    second = reconcile(reconciler, QueueConfig("jobs.example.com", 3), _context(client))

    assert first.action == CREATED
    assert second.action == UNCHANGED
    assert not second.changed
    assert client.writes == [("jobs.example.com", 3)]
    assert reconciler.settled == [CREATED]
    assert client.items["jobs.example.com"]["tags"] == {MANAGED_BY_TAG: "boostr-v1"}


def test_drift_is_corrected_with_update():
    client = FakeQueue()
    client.items["jobs.example.com"] = {"size": 1, "tags": {MANAGED_BY_TAG: "simple-deployment-v1"}}

    result = reconcile(QueueReconciler(), QueueConfig("jobs.example.com", 5), _context(client))

    assert result.action == UPDATED
    assert result.attributes == {"size": 5}
    assert client.items["jobs.example.com"]["size"] == 5


def test_unowned_resource_is_never_mutated():
    client = FakeQueue()
    client.items["jobs.example.com"] = {"size": 1, "tags": {"owner": "someone-else"}}

    with pytest.raises(OwnershipConflictError) as excinfo:
        reconcile(QueueReconciler(), QueueConfig("jobs.example.com", 1), _context(client))

    assert excinfo.value.identifier == "queue:jobs.example.com"
    assert client.writes == []


def test_lookup_is_cached_per_run():
    client = FakeQueue()
    context = _context(client)
    calls = []

    def loader():
        calls.append(1)
        return None

    assert context.lookup("queue", "a", loader) is None
    assert context.lookup("queue", "a", loader) is None
    assert len(calls) == 1


def test_require_raises_dependency_error():
    with pytest.raises(DependencyError, match="'function' stage"):
        _context(FakeQueue()).require("function", needed_by="gateway")


def test_combine_actions():
    assert combine_actions([UNCHANGED, UPDATED]) == UPDATED
    assert combine_actions([UPDATED, CREATED]) == CREATED
    assert combine_actions([]) == UNCHANGED


def test_ownership_policy_accepts_any_recognized_identifier():
    policy = OwnershipPolicy().with_legacy("legacy-v1")

    assert policy.current == "boostr-v1"
    assert policy.is_owned({MANAGED_BY_TAG: "legacy-v1"})
    assert not policy.is_owned({})
    assert not policy.is_owned(None)
    assert policy.creation_tags() == {MANAGED_BY_TAG: "boostr-v1"}


def test_ownership_policy_requires_identifiers():
    with pytest.raises(ValueError):
        OwnershipPolicy(identifiers=())


def test_tags_from_tag_set_skips_entries_without_key():
    tag_set = [{"Key": MANAGED_BY_TAG, "Value": "boostr-v1"}, {"Value": "orphan"}]
    assert tags_from_tag_set(tag_set) == {MANAGED_BY_TAG: "boostr-v1"}
    assert tags_from_tag_set(None) == {}


def test_reconcile_emits_emf_metric(caplog):
    caplog.set_level(logging.INFO, logger="deployer.reconciler.metrics")

    reconcile(QueueReconciler(), QueueConfig("jobs.example.com", 3), _context(FakeQueue()))

    messages = [record.getMessage() for record in caplog.records if record.getMessage().startswith("EMF ")]
    payload = json.loads(messages[0][len("EMF "):])
    assert payload["Resource"] == "jobs.example.com"
    assert payload["Stage"] == "queue"
    assert payload["Result"] == CREATED
    assert payload["_aws"]["CloudWatchMetrics"][0]["Namespace"] == "Deployer"
