"""Route 53 hosted zone lookup and record reconciliation."""
from __future__ import annotations

import logging
from typing import Any

from . import waiter
from .engine import DeployContext, Reconciler
from .errors import ConfigurationError
from .naming import canonical_dns_name
from .types import (
    HOSTED_ZONE_STAGE,
    PENDING,
    SUCCEEDED,
    UNCHANGED,
    DNSRecordConfig,
    OperationStatus,
    PendingOperation,
    RemoteResourceState,
)

LOGGER = logging.getLogger(__name__)


class HostedZoneReconciler(Reconciler[Any]):
    """Read-only: the hosted zone must exist before anything is deployed."""

    kind = "Route 53 hosted zone"
    requires_ownership = False

    def discover(self, context: DeployContext, config: Any) -> RemoteResourceState | None:
        zone = context.client.find_hosted_zone(config.domain_name)
        if zone is None:
            return None
        return RemoteResourceState(identifier=zone["id"], name=zone["name"], attributes=dict(zone))

    def create(self, context: DeployContext, config: Any) -> RemoteResourceState:
        raise ConfigurationError(
            f"Couldn't find a Route 53 hosted zone for '{config.domain_name}'; create one before deploying",
            resource=config.domain_name,
        )


def record_set(config: DNSRecordConfig) -> dict[str, Any]:
    name = config.domain_name + "."
    if config.record_type == "A":
        return {
            "Name": name,
            "Type": "A",
            "AliasTarget": {
                "DNSName": config.value + ".",
                "HostedZoneId": config.alias_hosted_zone_id,
                "EvaluateTargetHealth": False,
            },
        }
    return {
        "Name": name,
        "Type": config.record_type,
        "ResourceRecords": [{"Value": config.value}],
        "TTL": config.ttl,
    }


def _state_from_record(record: dict[str, Any]) -> RemoteResourceState:
    alias = record.get("AliasTarget") or {}
    values = record.get("ResourceRecords") or [{}]
    value = alias.get("DNSName") or values[0].get("Value") or ""
    name = canonical_dns_name(record["Name"])
    return RemoteResourceState(
        identifier=f"{name} {record['Type']}",
        name=name,
        attributes={
            "value": canonical_dns_name(value),
            "alias_hosted_zone_id": alias.get("HostedZoneId"),
            "ttl": record.get("TTL"),
        },
    )


class DNSRecordReconciler(Reconciler[DNSRecordConfig]):
    """Upserts CNAME and alias records; records carry no tags, so no ownership check."""

    kind = "Route 53 record"
    requires_ownership = False

    def key(self, config: DNSRecordConfig) -> str:
        return f"{config.domain_name} {config.record_type}"

    def _zone_id(self, context: DeployContext, config: DNSRecordConfig) -> str:
        return context.require(HOSTED_ZONE_STAGE, needed_by=self.kind, resource=config.domain_name).identifier

    def discover(self, context: DeployContext, config: DNSRecordConfig) -> RemoteResourceState | None:
        record = context.client.find_record_set(self._zone_id(context, config), config.domain_name, config.record_type)
        return None if record is None else _state_from_record(record)

    def diff(self, context: DeployContext, config: DNSRecordConfig, state: RemoteResourceState) -> list[str]:
        changes = []
        if state.attributes.get("value") != config.value:
            changes.append("value")
        if config.record_type == "A":
            if state.attributes.get("alias_hosted_zone_id") != config.alias_hosted_zone_id:
                changes.append("alias_hosted_zone_id")
        elif state.attributes.get("ttl") != config.ttl:
            changes.append("ttl")
        return changes

    def _upsert(self, context: DeployContext, config: DNSRecordConfig) -> RemoteResourceState:
        payload = record_set(config)
        change_id = context.retry(
            lambda: context.client.upsert_record_set(self._zone_id(context, config), payload),
            description=f"Upserting the {config.record_type} record {config.domain_name}",
            resource=config.domain_name,
        )
        state = _state_from_record(payload)
        state.attributes = {**state.attributes, "change_id": change_id}
        return state

    def create(self, context: DeployContext, config: DNSRecordConfig) -> RemoteResourceState:
        return self._upsert(context, config)

    def update(
        self, context: DeployContext, config: DNSRecordConfig, state: RemoteResourceState, changes: list[str]
    ) -> RemoteResourceState:
        return self._upsert(context, config)

    def settle(
        self, context: DeployContext, config: DNSRecordConfig, state: RemoteResourceState, action: str
    ) -> PendingOperation | None:
        change_id = state.attributes.get("change_id")
        if action == UNCHANGED or not change_id:
            return None

        def check() -> OperationStatus:
            status = context.client.get_change_status(change_id)
            return OperationStatus(PENDING if status == "PENDING" else SUCCEEDED, status)

        return waiter.pending(
            "the Route 53 record set change to complete", check, waiter.DNS_CHANGE, resource=config.domain_name
        )


__all__ = ["DNSRecordReconciler", "HostedZoneReconciler", "record_set"]
