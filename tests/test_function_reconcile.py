"""Tests for the Lambda function and execution role reconcilers."""
from __future__ import annotations

import io
import os
import zipfile

import pytest

from deployer.reconciler.engine import DeployContext, reconcile
from deployer.reconciler.errors import ConfigurationError, OwnershipConflictError, ProviderError
from deployer.reconciler.function_lib import (
    ExecutionRoleReconciler,
    FunctionReconciler,
    build_archive,
    code_sha256,
)
from deployer.reconciler.settings import DeploySettings
from deployer.reconciler.types import (
    CREATED,
    EXECUTION_ROLE_STAGE,
    MANAGED_BY_TAG,
    UNCHANGED,
    UPDATED,
    FunctionConfig,
    RemoteResourceState,
)

ACCOUNT_ID = "123456789012"
REGION = "us-east-1"


class FakeAws:
    def __init__(self):
        self.roles = {}
        self.functions = {}
        self.calls = []
        self.create_failures = []

    def get_role_arn(self, role_name):
        return self.roles.get(role_name)

    def create_role(self, role_name, *, assume_role_policy, policy_name, policy, tags):
        self.calls.append(("create_role", role_name))
        self.roles[role_name] = f"arn:aws:iam::{ACCOUNT_ID}:role/{role_name}"
        return self.roles[role_name]

    def get_function(self, name):
        item = self.functions.get(name)
        if item is None:
            return None
        return RemoteResourceState(
            identifier=f"arn:aws:lambda:{REGION}:{ACCOUNT_ID}:function:{name}",
            name=name,
            tags=item["tags"],
            attributes=dict(item["attributes"]),
        )

    def create_function(self, name, *, config, role_arn, archive, tags):
        self.calls.append(("create_function", name))
        if self.create_failures:
            raise self.create_failures.pop(0)
        self.functions[name] = {"tags": dict(tags), "attributes": self._attributes(config, role_arn, archive)}

    def update_function_configuration(self, name, *, config, role_arn):
        self.calls.append(("update_function_configuration", name))
        attributes = self.functions[name]["attributes"]
        kept = {key: attributes[key] for key in ("code_sha256", "reserved_concurrency")}
        attributes.update(self._attributes(config, role_arn, b""))
        attributes.update(kept)

    def update_function_code(self, name, archive):
        self.calls.append(("update_function_code", name))
        self.functions[name]["attributes"]["code_sha256"] = code_sha256(archive)

    def set_function_concurrency(self, name, reserved):
        self.calls.append(("set_function_concurrency", reserved))
        self.functions[name]["attributes"]["reserved_concurrency"] = reserved

    def get_function_status(self, name):
        return "Active", "Successful", None

    @staticmethod
    def _attributes(config, role_arn, archive):
        return {
            "runtime": config.runtime,
            "handler": config.handler,
            "role_arn": role_arn,
            "memory_size": config.memory_size,
            "timeout_seconds": config.timeout_seconds,
            "environment": dict(config.environment),
            "reserved_concurrency": None,
            "code_sha256": code_sha256(archive),
        }


@pytest.fixture
def source_dir(tmp_path):
    directory = tmp_path / "backend"
    (directory / "lib").mkdir(parents=True)
    (directory / "handler.js").write_text("exports.handler = async () => ({ statusCode: 200 });\n")
    (directory / "lib" / "util.js").write_text("module.exports = {};\n")
    return directory


def _config(directory, **overrides):
    return FunctionConfig(domain_name="api.example.com", directory=str(directory), **overrides)


def _deploy(aws, config):
    context = DeployContext(client=aws, settings=DeploySettings(retry_backoff_seconds=0), sleep=lambda _s: None)
    context.outputs[EXECUTION_ROLE_STAGE] = reconcile(ExecutionRoleReconciler(), config, context)
    return reconcile(FunctionReconciler(), config, context)


def test_archive_is_deterministic(source_dir):
    first = build_archive(str(source_dir))
    os.utime(source_dir / "handler.js", (1_000_000, 1_000_000))
    second = build_archive(str(source_dir))

    assert first == second
    with zipfile.ZipFile(io.BytesIO(first)) as archive:
        assert archive.namelist() == ["handler.js", "lib/util.js"]


def test_archive_requires_directory(tmp_path):
    with pytest.raises(ConfigurationError):
        build_archive(str(tmp_path / "missing"))


def test_create_then_unchanged(source_dir):
    aws = FakeAws()
    config = _config(source_dir)

    created = _deploy(aws, config)
    aws.calls.clear()
    second = _deploy(aws, config)

    assert created.action == CREATED
    assert created.attributes["function_name"] == "api-example-com"
    assert aws.functions["api-example-com"]["tags"] == {MANAGED_BY_TAG: "boostr-v1"}
    assert second.action == UNCHANGED
    assert aws.calls == []


def test_create_retries_until_role_has_propagated(source_dir):
    aws = FakeAws()
    aws.create_failures.append(ProviderError("InvalidParameterValueException", "The role cannot be assumed"))

    result = _deploy(aws, _config(source_dir))

    assert result.action == CREATED
    assert [call for call in aws.calls if call[0] == "create_function"] == [
        ("create_function", "api-example-com"),
        ("create_function", "api-example-com"),
    ]


def test_reserved_concurrency_is_set_on_create(source_dir):
    aws = FakeAws()

    _deploy(aws, _config(source_dir, reserved_concurrency=3))

    assert ("set_function_concurrency", 3) in aws.calls
    assert aws.functions["api-example-com"]["attributes"]["reserved_concurrency"] == 3


def test_removed_reserved_concurrency_is_cleared(source_dir):
    aws = FakeAws()
    _deploy(aws, _config(source_dir, reserved_concurrency=3))
    aws.calls.clear()

    result = _deploy(aws, _config(source_dir))

    assert result.action == UPDATED
    assert ("set_function_concurrency", None) in aws.calls
    assert ("update_function_code", "api-example-com") not in aws.calls


def test_configuration_drift_submits_full_configuration(source_dir):
    aws = FakeAws()
    _deploy(aws, _config(source_dir, environment={"A": "1"}))
    aws.calls.clear()

    _deploy(aws, _config(source_dir, memory_size=256))

    attributes = aws.functions["api-example-com"]["attributes"]
    assert attributes["memory_size"] == 256
    assert attributes["environment"] == {}
    assert ("update_function_configuration", "api-example-com") in aws.calls


def test_code_change_is_uploaded(source_dir):
    aws = FakeAws()
    _deploy(aws, _config(source_dir))
    (source_dir / "handler.js").write_text("exports.handler = async () => ({ statusCode: 204 });\n")
    aws.calls.clear()

    result = _deploy(aws, _config(source_dir))

    assert result.action == UPDATED
    assert ("update_function_code", "api-example-com") in aws.calls


def test_foreign_function_is_not_modified(source_dir):
    aws = FakeAws()
    _deploy(aws, _config(source_dir))
    aws.functions["api-example-com"]["tags"] = {}
    aws.calls.clear()

    with pytest.raises(OwnershipConflictError):
        _deploy(aws, _config(source_dir, memory_size=256))
    assert aws.calls == []


def test_existing_role_is_used_as_is(source_dir):
    aws = FakeAws()
    aws.roles["deployer-backend-lambda-role-v1"] = f"arn:aws:iam::{ACCOUNT_ID}:role/deployer-backend-lambda-role-v1"

    _deploy(aws, _config(source_dir))

    assert ("create_role", "deployer-backend-lambda-role-v1") not in aws.calls
