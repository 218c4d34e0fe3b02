"""ACM certificate lookup, request and DNS validation."""
from __future__ import annotations

import logging
from typing import Any

from . import waiter
from .dns_lib import DNSRecordReconciler
from .engine import DeployContext, Reconciler, reconcile
from .types import (
    CREATED,
    FAILED,
    PENDING,
    SUCCEEDED,
    CertificateConfig,
    DNSRecordConfig,
    OperationStatus,
    PendingOperation,
    RemoteResourceState,
)

LOGGER = logging.getLogger(__name__)

ISSUED = "ISSUED"
PENDING_VALIDATION = "PENDING_VALIDATION"
FAILED_STATUSES = ("FAILED", "VALIDATION_TIMED_OUT", "REVOKED", "EXPIRED", "INACTIVE")


def candidate_names(domain_name: str) -> set[str]:
    """Names a certificate may cover to serve ``domain_name``: itself or its wildcard."""
    names = {domain_name}
    parts = domain_name.split(".")
    if len(parts) > 2:
        names.add("*." + ".".join(parts[1:]))
    return names


def find_certificate(context: DeployContext, config: CertificateConfig) -> RemoteResourceState | None:
    """Best certificate for the domain.

    Exact and wildcard matches are ranked by the length of the matching
    subject alternative name. An issued certificate wins; otherwise a
    certificate pending validation is used only when this tool requested it.
    """
    client = context.client
    names = candidate_names(config.domain_name)
    matches: list[tuple[str, dict[str, Any]]] = []
    for summary in client.list_certificates(region=config.region):
        if summary.get("DomainName") not in names:
            continue
        detail = client.describe_certificate(summary["CertificateArn"], region=config.region)
        matched = [name for name in detail.get("SubjectAlternativeNames", []) if name in names]
        if matched:
            matches.append((max(matched, key=len), detail))
    matches.sort(key=lambda item: -len(item[0]))

    for matched_name, detail in matches:
        if detail.get("Status") == ISSUED:
            return _state(detail, matched_name, tags={})
    for matched_name, detail in matches:
        if detail.get("Status") == PENDING_VALIDATION:
            tags = client.get_certificate_tags(detail["CertificateArn"], region=config.region)
            if context.ownership.is_owned(tags):
                return _state(detail, matched_name, tags=tags)
    return None


def _state(detail: dict[str, Any], matched_name: str, *, tags: dict[str, str]) -> RemoteResourceState:
    return RemoteResourceState(
        identifier=detail["CertificateArn"],
        name=matched_name,
        tags=tags,
        attributes={"arn": detail["CertificateArn"], "status": detail.get("Status"), "matched_name": matched_name},
    )


class CertificateReconciler(Reconciler[CertificateConfig]):
    """Existing certificates are used as they are; only missing ones are requested."""

    kind = "ACM certificate"
    requires_ownership = False

    def __init__(self, records: DNSRecordReconciler | None = None) -> None:
        self._records = records or DNSRecordReconciler()

    def discover(self, context: DeployContext, config: CertificateConfig) -> RemoteResourceState | None:
        return find_certificate(context, config)

    def create(self, context: DeployContext, config: CertificateConfig) -> RemoteResourceState:
        client = context.client
        tags = context.ownership.creation_tags()
        arn = client.request_certificate(config.domain_name, tags=tags, region=config.region)
        LOGGER.info("Requested the certificate %s for %s", arn, config.domain_name)

        self.publish_validation_record(context, config, arn)
        return RemoteResourceState(
            identifier=arn,
            name=config.domain_name,
            tags=tags,
            attributes={"arn": arn, "status": PENDING_VALIDATION, "matched_name": config.domain_name},
        )

    def publish_validation_record(self, context: DeployContext, config: CertificateConfig, arn: str) -> None:
        """Upsert the CNAME ACM checks before issuing ``arn``."""
        record = self.validation_record(context, config, arn)
        reconcile(
            self._records,
            DNSRecordConfig(domain_name=record["Name"], record_type="CNAME", value=record["Value"]),
            context,
        )

    def validation_record(self, context: DeployContext, config: CertificateConfig, arn: str) -> dict[str, str]:
        record: dict[str, str] = {}

        def check() -> OperationStatus:
            detail = context.client.describe_certificate(arn, region=config.region)
            options = detail.get("DomainValidationOptions") or [{}]
            resource_record = options[0].get("ResourceRecord") or {}
            if resource_record.get("Type") == "CNAME":
                record.update(resource_record)
                return OperationStatus(SUCCEEDED)
            return OperationStatus(PENDING)

        context.wait(
            waiter.pending(
                "the certificate DNS validation record",
                check,
                waiter.CERTIFICATE_VALIDATION_RECORD,
                resource=config.domain_name,
            )
        )
        return record

    def settle(
        self, context: DeployContext, config: CertificateConfig, state: RemoteResourceState, action: str
    ) -> PendingOperation | None:
        if state.attributes.get("status") == ISSUED:
            return None
        arn = state.identifier
        if action != CREATED and state.attributes.get("status") == PENDING_VALIDATION:
            # a previous run may have stopped between the request and the CNAME
            self.publish_validation_record(context, config, arn)

        def check() -> OperationStatus:
            detail = context.client.describe_certificate(arn, region=config.region)
            status = detail.get("Status")
            if status == ISSUED:
                return OperationStatus(SUCCEEDED, status)
            if status in FAILED_STATUSES:
                return OperationStatus(FAILED, detail.get("FailureReason") or status)
            return OperationStatus(PENDING, status)

        return waiter.pending(
            "the ACM certificate validation", check, waiter.CERTIFICATE_ISSUANCE, resource=config.domain_name
        )

    def outputs(self, state: RemoteResourceState) -> dict[str, Any]:
        return {"arn": state.identifier, "matched_name": state.name}


__all__ = ["CertificateReconciler", "candidate_names", "find_certificate"]
