"""HTTP API gateway in front of the function, and its custom domain."""
from __future__ import annotations

import logging
import re
from typing import Any, Mapping

from . import waiter
from .client import normalize_cors
from .engine import DeployContext, Reconciler
from .errors import ProviderError
from .types import (
    CERTIFICATE_STAGE,
    FUNCTION_STAGE,
    GATEWAY_DOMAIN_STAGE,
    GATEWAY_STAGE,
    PENDING,
    SUCCEEDED,
    UNCHANGED,
    GatewayConfig,
    OperationStatus,
    PendingOperation,
    RemoteResourceState,
)

LOGGER = logging.getLogger(__name__)

GATEWAY_PRINCIPAL = "apigateway.amazonaws.com"
GATEWAY_STATEMENT_ID = "allow_api_gateway"
_ACCOUNT_ID = re.compile(r"^arn:aws[a-z-]*:[^:]+:[^:]*:(\d+):")


def account_id(arn: str) -> str:
    matches = _ACCOUNT_ID.match(arn)
    if matches is None:
        raise ProviderError("InvalidArn", f"Unable to find out the AWS account ID from '{arn}'")
    return matches.group(1)


def gateway_source_arn(region: str, function_arn: str, api_id: str) -> str:
    return f"arn:aws:execute-api:{region}:{account_id(function_arn)}:{api_id}/*/*"


class GatewayReconciler(Reconciler[GatewayConfig]):
    """HTTP API named after the domain, proxying every route to the function."""

    kind = "API Gateway"

    def _function_arn(self, context: DeployContext, config: GatewayConfig) -> str:
        return context.require(FUNCTION_STAGE, needed_by=GATEWAY_STAGE, resource=config.domain_name).identifier

    def discover(self, context: DeployContext, config: GatewayConfig) -> RemoteResourceState | None:
        state = context.client.find_api(config.domain_name)
        if state is None:
            return None
        integration = context.client.get_integration(state.identifier)
        if integration is not None:
            integration_id, target_arn = integration
            state.attributes = {**state.attributes, "integration_id": integration_id, "target_arn": target_arn}
        return state

    def diff(self, context: DeployContext, config: GatewayConfig, state: RemoteResourceState) -> list[str]:
        changes = []
        if state.attributes.get("cors") != normalize_cors(config.cors):
            changes.append("cors")
        if state.attributes.get("target_arn") != self._function_arn(context, config):
            changes.append("target_arn")
        return changes

    def _allow_invocation(self, context: DeployContext, config: GatewayConfig, api_id: str) -> None:
        function_arn = self._function_arn(context, config)
        granted = context.retry(
            lambda: context.client.add_permission(
                function_arn,
                statement_id=GATEWAY_STATEMENT_ID,
                principal=GATEWAY_PRINCIPAL,
                source_arn=gateway_source_arn(config.region, function_arn, api_id),
            ),
            description="Allowing the API Gateway to invoke the function",
            resource=config.domain_name,
        )
        if not granted:
            LOGGER.debug("The API Gateway invoke permission already exists")

    def create(self, context: DeployContext, config: GatewayConfig) -> RemoteResourceState:
        function_arn = self._function_arn(context, config)
        state = context.client.create_api(
            config.domain_name,
            target_arn=function_arn,
            cors=config.cors,
            tags=context.ownership.creation_tags(),
        )
        self._allow_invocation(context, config, state.identifier)
        state.attributes = {**state.attributes, "target_arn": function_arn}
        return state

    def update(
        self, context: DeployContext, config: GatewayConfig, state: RemoteResourceState, changes: list[str]
    ) -> RemoteResourceState:
        client = context.client
        function_arn = self._function_arn(context, config)
        client.update_api(state.identifier, name=config.domain_name, cors=config.cors)
        integration_id = state.attributes.get("integration_id")
        if integration_id:
            client.update_integration(state.identifier, integration_id, target_arn=function_arn)
        self._allow_invocation(context, config, state.identifier)
        return RemoteResourceState(
            identifier=state.identifier,
            name=state.name,
            tags=state.tags,
            attributes={**state.attributes, "cors": normalize_cors(config.cors), "target_arn": function_arn},
        )

    def outputs(self, state: RemoteResourceState) -> Mapping[str, Any]:
        return {"id": state.identifier, "endpoint": state.attributes.get("endpoint")}


class GatewayDomainReconciler(Reconciler[GatewayConfig]):
    kind = "API Gateway custom domain"

    def _dependencies(self, context: DeployContext, config: GatewayConfig) -> tuple[str, str]:
        certificate = context.require(CERTIFICATE_STAGE, needed_by=GATEWAY_DOMAIN_STAGE, resource=config.domain_name)
        gateway = context.require(GATEWAY_STAGE, needed_by=GATEWAY_DOMAIN_STAGE, resource=config.domain_name)
        return certificate.identifier, gateway.identifier

    def discover(self, context: DeployContext, config: GatewayConfig) -> RemoteResourceState | None:
        state = context.client.get_domain_name(config.domain_name)
        if state is None:
            return None
        mappings = context.client.get_api_mappings(config.domain_name)
        if mappings:
            state.attributes = {**state.attributes, "mapping_id": mappings[0]["id"], "api_id": mappings[0]["api_id"]}
        return state

    def diff(self, context: DeployContext, config: GatewayConfig, state: RemoteResourceState) -> list[str]:
        certificate_arn, api_id = self._dependencies(context, config)
        changes = []
        if state.attributes.get("certificate_arn") != certificate_arn:
            changes.append("certificate_arn")
        if state.attributes.get("api_id") != api_id:
            changes.append("api_id")
        return changes

    def create(self, context: DeployContext, config: GatewayConfig) -> RemoteResourceState:
        certificate_arn, api_id = self._dependencies(context, config)
        state = context.client.create_domain_name(
            config.domain_name, certificate_arn=certificate_arn, tags=context.ownership.creation_tags()
        )
        context.client.put_api_mapping(config.domain_name, api_id=api_id)
        state.attributes = {**state.attributes, "api_id": api_id}
        return state

    def update(
        self, context: DeployContext, config: GatewayConfig, state: RemoteResourceState, changes: list[str]
    ) -> RemoteResourceState:
        certificate_arn, api_id = self._dependencies(context, config)
        client = context.client
        client.update_domain_name(config.domain_name, certificate_arn=certificate_arn)
        client.put_api_mapping(config.domain_name, api_id=api_id, mapping_id=state.attributes.get("mapping_id"))
        refreshed = client.get_domain_name(config.domain_name) or state
        refreshed.attributes = {**refreshed.attributes, "api_id": api_id}
        return refreshed

    def settle(
        self, context: DeployContext, config: GatewayConfig, state: RemoteResourceState, action: str
    ) -> PendingOperation | None:
        if action == UNCHANGED or state.attributes.get("status") in (None, "AVAILABLE"):
            return None

        def check() -> OperationStatus:
            current = context.client.get_domain_name(config.domain_name)
            status = current.attributes.get("status") if current is not None else None
            return OperationStatus(SUCCEEDED if status == "AVAILABLE" else PENDING, status)

        return waiter.pending(
            "the API Gateway custom domain to be available", check, waiter.GATEWAY_DOMAIN, resource=config.domain_name
        )

    def outputs(self, state: RemoteResourceState) -> Mapping[str, Any]:
        return {
            "domain_name": state.attributes.get("target_domain_name"),
            "hosted_zone_id": state.attributes.get("hosted_zone_id"),
        }


__all__ = ["GatewayDomainReconciler", "GatewayReconciler", "account_id", "gateway_source_arn"]
