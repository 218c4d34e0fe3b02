"""Lambda function and IAM execution role reconcilers."""
from __future__ import annotations

import base64
import hashlib
import io
import logging
import os
import zipfile
from typing import Any, Mapping

from . import retry, waiter
from .engine import DeployContext, Reconciler
from .errors import ConfigurationError, ProviderError
from .types import (
    EXECUTION_ROLE_STAGE,
    FAILED,
    FUNCTION_STAGE,
    PENDING,
    SUCCEEDED,
    UNCHANGED,
    FunctionConfig,
    OperationStatus,
    PendingOperation,
    RemoteResourceState,
)

LOGGER = logging.getLogger(__name__)

EXECUTION_POLICY_NAME = "basic-lambda-policy"

ASSUME_ROLE_POLICY = {
    "Version": "2012-10-17",
    "Statement": [
        {
            "Effect": "Allow",
            "Principal": {"Service": "lambda.amazonaws.com"},
            "Action": "sts:AssumeRole",
        }
    ],
}

EXECUTION_POLICY = {
    "Version": "2012-10-17",
    "Statement": [{"Action": ["logs:*"], "Effect": "Allow", "Resource": "*"}],
}

# Fixed entry timestamp so identical sources always produce identical archives.
ARCHIVE_TIMESTAMP = (1984, 1, 24, 0, 0, 0)


def build_archive(directory: str) -> bytes:
    """Zip ``directory`` deterministically (sorted entries, fixed timestamps and modes)."""
    if not os.path.isdir(directory):
        raise ConfigurationError(f"The function directory '{directory}' does not exist")
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        for root, dirs, files in os.walk(directory):
            dirs.sort()
            for filename in sorted(files):
                path = os.path.join(root, filename)
                arcname = os.path.relpath(path, directory).replace(os.sep, "/")
                info = zipfile.ZipInfo(arcname, date_time=ARCHIVE_TIMESTAMP)
                info.compress_type = zipfile.ZIP_DEFLATED
                info.external_attr = 0o644 << 16
                with open(path, "rb") as handle:
                    archive.writestr(info, handle.read())
    return buffer.getvalue()


def code_sha256(archive: bytes) -> str:
    """Base64 SHA-256 digest, the format Lambda reports as ``CodeSha256``."""
    return base64.b64encode(hashlib.sha256(archive).digest()).decode("ascii")


class ExecutionRoleReconciler(Reconciler[FunctionConfig]):
    """Ensures the shared execution role exists; an existing role is used as is."""

    kind = "IAM role"
    requires_ownership = False

    def key(self, config: FunctionConfig) -> str:
        return config.execution_role

    def discover(self, context: DeployContext, config: FunctionConfig) -> RemoteResourceState | None:
        arn = context.client.get_role_arn(config.execution_role)
        if arn is None:
            return None
        return RemoteResourceState(identifier=arn, name=config.execution_role, attributes={"arn": arn})

    def create(self, context: DeployContext, config: FunctionConfig) -> RemoteResourceState:
        arn = context.client.create_role(
            config.execution_role,
            assume_role_policy=ASSUME_ROLE_POLICY,
            policy_name=EXECUTION_POLICY_NAME,
            policy=EXECUTION_POLICY,
            tags=context.ownership.creation_tags(),
        )
        return RemoteResourceState(
            identifier=arn,
            name=config.execution_role,
            tags=context.ownership.creation_tags(),
            attributes={"arn": arn},
        )


class FunctionReconciler(Reconciler[FunctionConfig]):
    kind = "Lambda function"

    def __init__(self) -> None:
        self._archives: dict[str, bytes] = {}

    def key(self, config: FunctionConfig) -> str:
        return config.function_name

    def archive(self, config: FunctionConfig) -> bytes:
        if config.directory not in self._archives:
            LOGGER.info("Building the ZIP archive of %s...", config.directory)
            self._archives[config.directory] = build_archive(config.directory)
        return self._archives[config.directory]

    def _role_arn(self, context: DeployContext, config: FunctionConfig) -> str:
        return context.require(EXECUTION_ROLE_STAGE, needed_by=FUNCTION_STAGE, resource=config.function_name).identifier

    def discover(self, context: DeployContext, config: FunctionConfig) -> RemoteResourceState | None:
        return context.client.get_function(config.function_name)

    def diff(self, context: DeployContext, config: FunctionConfig, state: RemoteResourceState) -> list[str]:
        attributes = state.attributes
        desired: dict[str, Any] = {
            "runtime": config.runtime,
            "handler": config.handler,
            "role_arn": self._role_arn(context, config),
            "memory_size": config.memory_size,
            "timeout_seconds": config.timeout_seconds,
            "environment": dict(config.environment),
            "reserved_concurrency": config.reserved_concurrency,
            "code_sha256": code_sha256(self.archive(config)),
        }
        return [name for name, value in desired.items() if attributes.get(name) != value]

    def create(self, context: DeployContext, config: FunctionConfig) -> RemoteResourceState:
        client = context.client
        name = config.function_name
        role_arn = self._role_arn(context, config)
        archive = self.archive(config)
        tags = context.ownership.creation_tags()
        LOGGER.info("Uploading %d bytes of code to %s", len(archive), name)
        context.retry(
            lambda: client.create_function(name, config=config, role_arn=role_arn, archive=archive, tags=tags),
            description=f"Creating the Lambda function {name}",
            codes=retry.ROLE_PROPAGATION_CODES,
            resource=name,
        )
        if config.reserved_concurrency is not None:
            context.wait(self.ready(context, name))
            client.set_function_concurrency(name, config.reserved_concurrency)
        return self._refresh(context, name)

    def update(
        self, context: DeployContext, config: FunctionConfig, state: RemoteResourceState, changes: list[str]
    ) -> RemoteResourceState:
        client = context.client
        name = config.function_name
        role_arn = self._role_arn(context, config)
        context.retry(
            lambda: client.update_function_configuration(name, config=config, role_arn=role_arn),
            description=f"Updating the Lambda function configuration of {name}",
            codes=retry.ROLE_PROPAGATION_CODES,
            resource=name,
        )
        if "code_sha256" in changes:
            archive = self.archive(config)
            context.wait(self.ready(context, name))
            context.retry(
                lambda: client.update_function_code(name, archive),
                description=f"Updating the Lambda function code of {name}",
                resource=name,
            )
        client.set_function_concurrency(name, config.reserved_concurrency)
        return self._refresh(context, name)

    def _refresh(self, context: DeployContext, name: str) -> RemoteResourceState:
        state = context.client.get_function(name)
        if state is None:
            raise ProviderError("ResourceNotFoundException", f"The Lambda function {name} disappeared", resource=name)
        return state

    def settle(
        self, context: DeployContext, config: FunctionConfig, state: RemoteResourceState, action: str
    ) -> PendingOperation | None:
        if action == UNCHANGED:
            return None
        return self.ready(context, config.function_name)

    def ready(self, context: DeployContext, name: str) -> PendingOperation:
        def check() -> OperationStatus:
            status, last_update, reason = context.client.get_function_status(name)
            if status == "Failed" or last_update == "Failed":
                return OperationStatus(FAILED, reason)
            if status == "Active" and last_update in (None, "Successful"):
                return OperationStatus(SUCCEEDED)
            return OperationStatus(PENDING)

        return waiter.pending(f"the Lambda function {name} to be ready", check, waiter.FUNCTION_UPDATE, resource=name)

    def outputs(self, state: RemoteResourceState) -> Mapping[str, Any]:
        return {"arn": state.identifier, "function_name": state.name}


__all__ = [
    "ExecutionRoleReconciler",
    "FunctionReconciler",
    "build_archive",
    "code_sha256",
]
