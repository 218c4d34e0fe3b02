"""Tests for background job trigger registration."""
from __future__ import annotations

import pytest

from deployer.reconciler.engine import DeployContext
from deployer.reconciler.errors import DependencyError, OwnershipConflictError
from deployer.reconciler.settings import DeploySettings
from deployer.reconciler.trigger_lib import job_payload, register_triggers
from deployer.reconciler.types import (
    CREATED,
    FUNCTION_STAGE,
    MANAGED_BY_TAG,
    UNCHANGED,
    UPDATED,
    BackgroundJob,
    FunctionConfig,
    ReconciliationResult,
    RemoteResourceState,
)

FUNCTION_ARN = "arn:aws:lambda:us-east-1:123456789012:function:api-example-com"


class FakeAws:
    def __init__(self):
        self.rules = {}
        self.permissions = set()
        self.calls = []

    def describe_rule(self, name):
        rule = self.rules.get(name)
        if rule is None:
            return None
        return RemoteResourceState(
            identifier=f"arn:aws:events:us-east-1:123456789012:rule/{name}",
            name=name,
            tags=rule["tags"],
            attributes={"schedule": rule["schedule"], "pattern": rule["pattern"]},
        )

    def put_rule(self, name, *, schedule, pattern, description, tags=None):
        self.calls.append(("put_rule", name))
        current = self.rules.get(name, {"tags": {}, "target": None})
        self.rules[name] = {**current, "schedule": schedule, "pattern": pattern, "tags": dict(tags or current["tags"])}
        return f"arn:aws:events:us-east-1:123456789012:rule/{name}"

    def put_rule_target(self, rule, *, target_id, arn, payload):
        self.calls.append(("put_rule_target", rule))
        self.rules[rule]["target"] = (target_id, arn, payload)

    def add_permission(self, function_arn, *, statement_id, principal, source_arn):
        self.calls.append(("add_permission", statement_id))
        self.permissions.add(statement_id)
        return True

    def remove_permission(self, function_arn, *, statement_id):
        self.calls.append(("remove_permission", statement_id))
        self.permissions.discard(statement_id)

    def list_rule_names_by_target(self, target_arn):
        return sorted(name for name, rule in self.rules.items() if rule["target"] and rule["target"][1] == target_arn)

    def list_rule_targets(self, rule):
        target = self.rules[rule]["target"]
        if target is None:
            return []
        target_id, arn, payload = target
        return [{"id": target_id, "arn": arn, "payload": payload}]

    def delete_rule(self, name):
        self.calls.append(("delete_rule", name))
        del self.rules[name]


def _context(aws):
    context = DeployContext(client=aws, settings=DeploySettings(), sleep=lambda _s: None)
    context.outputs[FUNCTION_STAGE] = ReconciliationResult(
        resource="api-example-com", kind="Lambda function", action=UNCHANGED, identifier=FUNCTION_ARN
    )
    return context


def _config(*jobs):
    return FunctionConfig(domain_name="api.example.com", directory=".", background_jobs=jobs)


def test_new_jobs_create_rules_targets_and_permissions():
    aws = FakeAws()
    config = _config(
        BackgroundJob(path="jobs/cleanup", rate_ms=300_000),
        BackgroundJob(path="jobs/on-upload", event_pattern={"source": ["aws.s3"]}),
    )

    result = register_triggers(config, _context(aws))

    assert result.action == CREATED
    assert result.attributes["rules"] == {
        "api-example-com-jobs-cleanup": CREATED,
        "api-example-com-jobs-on-upload": CREATED,
    }
    cleanup = aws.rules["api-example-com-jobs-cleanup"]
    assert cleanup["schedule"] == "rate(5 minutes)"
    assert cleanup["tags"] == {MANAGED_BY_TAG: "boostr-v1"}
    assert cleanup["target"] == ("background-job", FUNCTION_ARN, {"backgroundJob": {"path": "jobs/cleanup"}})
    assert aws.rules["api-example-com-jobs-on-upload"]["pattern"] == '{"source":["aws.s3"]}'
    assert aws.permissions == {"api-example-com-jobs-cleanup", "api-example-com-jobs-on-upload"}


def test_second_run_is_unchanged():
    aws = FakeAws()
    config = _config(BackgroundJob(path="jobs/cleanup", rate_ms=300_000))
    register_triggers(config, _context(aws))
    aws.calls.clear()

    result = register_triggers(config, _context(aws))

    assert result.action == UNCHANGED
    assert aws.calls == []


def test_changed_rate_updates_rule():
    aws = FakeAws()
    register_triggers(_config(BackgroundJob(path="jobs/cleanup", rate_ms=300_000)), _context(aws))
    aws.calls.clear()

    result = register_triggers(_config(BackgroundJob(path="jobs/cleanup", rate_ms=3_600_000)), _context(aws))

    assert result.action == UPDATED
    assert aws.rules["api-example-com-jobs-cleanup"]["schedule"] == "rate(1 hour)"
    assert ("add_permission", "api-example-com-jobs-cleanup") not in aws.calls


def test_foreign_rule_is_not_updated():
    aws = FakeAws()
    aws.rules["api-example-com-jobs-cleanup"] = {"schedule": "rate(1 day)", "pattern": None, "tags": {}, "target": None}

    with pytest.raises(OwnershipConflictError):
        register_triggers(_config(BackgroundJob(path="jobs/cleanup", rate_ms=300_000)), _context(aws))
    assert aws.calls == []


def test_rule_without_target_is_reattached():
    aws = FakeAws()
    aws.rules["api-example-com-jobs-cleanup"] = {
        "schedule": "rate(5 minutes)",
        "pattern": None,
        "tags": {MANAGED_BY_TAG: "boostr-v1"},
        "target": None,
    }

    result = register_triggers(_config(BackgroundJob(path="jobs/cleanup", rate_ms=300_000)), _context(aws))

    assert result.action == UPDATED
    assert result.attributes["rules"] == {"api-example-com-jobs-cleanup": UPDATED}
    assert aws.rules["api-example-com-jobs-cleanup"]["target"] == (
        "background-job",
        FUNCTION_ARN,
        {"backgroundJob": {"path": "jobs/cleanup"}},
    )
    assert aws.permissions == {"api-example-com-jobs-cleanup"}
    assert ("put_rule", "api-example-com-jobs-cleanup") not in aws.calls


def test_rule_targeting_another_function_is_repointed():
    aws = FakeAws()
    register_triggers(_config(BackgroundJob(path="jobs/cleanup", rate_ms=300_000)), _context(aws))
    rule = aws.rules["api-example-com-jobs-cleanup"]
    rule["target"] = ("background-job", "arn:aws:lambda:us-east-1:123456789012:function:old", rule["target"][2])

    result = register_triggers(_config(BackgroundJob(path="jobs/cleanup", rate_ms=300_000)), _context(aws))

    assert result.action == UPDATED
    assert aws.rules["api-example-com-jobs-cleanup"]["target"][1] == FUNCTION_ARN


def test_foreign_rule_without_target_is_not_touched():
    aws = FakeAws()
    aws.rules["api-example-com-jobs-cleanup"] = {"schedule": "rate(5 minutes)", "pattern": None, "tags": {}, "target": None}

    with pytest.raises(OwnershipConflictError):
        register_triggers(_config(BackgroundJob(path="jobs/cleanup", rate_ms=300_000)), _context(aws))
    assert aws.calls == []


def test_undeclared_owned_rules_are_removed():
    aws = FakeAws()
    register_triggers(
        _config(BackgroundJob(path="jobs/cleanup", rate_ms=300_000), BackgroundJob(path="jobs/old", rate_ms=60_000)),
        _context(aws),
    )
    aws.rules["someone-elses-rule"] = {
        "schedule": "rate(1 day)",
        "pattern": None,
        "tags": {},
        "target": ("other", FUNCTION_ARN, {}),
    }

    result = register_triggers(_config(BackgroundJob(path="jobs/cleanup", rate_ms=300_000)), _context(aws))

    assert result.action == UPDATED
    assert result.attributes["removed"] == ["api-example-com-jobs-old"]
    assert "api-example-com-jobs-old" not in aws.rules
    assert "someone-elses-rule" in aws.rules
    assert "api-example-com-jobs-old" not in aws.permissions


def test_requires_function_stage():
    context = DeployContext(client=FakeAws(), settings=DeploySettings())
    with pytest.raises(DependencyError):
        register_triggers(_config(), context)


def test_job_payload():
    assert job_payload(BackgroundJob(path="jobs/x", rate_ms=60_000)) == {"backgroundJob": {"path": "jobs/x"}}
