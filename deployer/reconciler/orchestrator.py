"""Fixed stage topologies for function and website deployments."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Collection, Sequence

from .certificate_lib import CertificateReconciler
from .content_lib import sync_content
from .dns_lib import DNSRecordReconciler, HostedZoneReconciler
from .engine import DeployContext, Reconciler, reconcile
from .errors import ConfigurationError, DependencyError, DeploymentError, StageFailedError
from .function_lib import ExecutionRoleReconciler, FunctionReconciler
from .gateway_lib import GatewayDomainReconciler, GatewayReconciler
from .trigger_lib import register_triggers
from .types import (
    BACKGROUND_TRIGGERS_STAGE,
    BUCKET_STAGE,
    CERTIFICATE_STAGE,
    CONTENT_STAGE,
    DISTRIBUTION_STAGE,
    DNS_ALIAS_STAGE,
    EXECUTION_ROLE_STAGE,
    FUNCTION_STAGE,
    GATEWAY_DOMAIN_STAGE,
    GATEWAY_STAGE,
    HOSTED_ZONE_STAGE,
    INVALIDATION_STAGE,
    SKIPPED,
    CertificateConfig,
    DNSRecordConfig,
    FunctionConfig,
    GatewayConfig,
    ReconciliationResult,
    WebsiteConfig,
)
from .website_lib import BucketReconciler, DistributionReconciler, invalidate

LOGGER = logging.getLogger(__name__)

# Website certificates are served by CloudFront, which only reads us-east-1.
CLOUDFRONT_CERTIFICATE_REGION = "us-east-1"

StageRunner = Callable[[Any, DeployContext], ReconciliationResult]
StageResolver = Callable[[Any, DeployContext], "ReconciliationResult | None"]


@dataclass(slots=True, frozen=True)
class Stage:
    """One step of a deployment; ``resolve`` looks its resource up without mutating it."""

    name: str
    run: StageRunner
    resolve: StageResolver | None = None


@dataclass(slots=True)
class DeploymentOutcome:
    kind: str
    domain_name: str
    results: dict[str, ReconciliationResult] = field(default_factory=dict)
    skipped: list[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return any(result.changed for result in self.results.values() if result.action != SKIPPED)

    @property
    def url(self) -> str:
        return f"https://{self.domain_name}"


def resource_stage(name: str, reconciler: Reconciler[Any], build: Callable[[Any, DeployContext], Any]) -> Stage:
    """Stage reconciling the resource described by ``build(config, context)``."""

    def run(config: Any, context: DeployContext) -> ReconciliationResult:
        return reconcile(reconciler, build(config, context), context)

    def resolve(config: Any, context: DeployContext) -> ReconciliationResult | None:
        resource_config = build(config, context)
        key = reconciler.key(resource_config)
        state = context.lookup(reconciler.kind, key, lambda: reconciler.discover(context, resource_config))
        if state is None:
            return None
        return ReconciliationResult(
            resource=key,
            kind=reconciler.kind,
            action=SKIPPED,
            identifier=state.identifier,
            attributes=reconciler.outputs(state),
        )

    return Stage(name=name, run=run, resolve=resolve)


def _same(config: Any, context: DeployContext) -> Any:
    return config


def _certificate(config: FunctionConfig, context: DeployContext) -> CertificateConfig:
    return CertificateConfig(domain_name=config.domain_name, region=config.region)


def _website_certificate(config: WebsiteConfig, context: DeployContext) -> CertificateConfig:
    return CertificateConfig(domain_name=config.domain_name, region=CLOUDFRONT_CERTIFICATE_REGION)


def _gateway(config: FunctionConfig, context: DeployContext) -> GatewayConfig:
    return GatewayConfig(domain_name=config.domain_name, region=config.region, cors=config.cors)


def _alias_to(stage: str) -> Callable[[Any, DeployContext], DNSRecordConfig]:
    def build(config: Any, context: DeployContext) -> DNSRecordConfig:
        target = context.require(stage, needed_by=DNS_ALIAS_STAGE, resource=config.domain_name)
        return DNSRecordConfig(
            domain_name=config.domain_name,
            record_type="A",
            value=target.attributes["domain_name"],
            alias_hosted_zone_id=target.attributes["hosted_zone_id"],
        )

    return build


def function_stages() -> list[Stage]:
    records = DNSRecordReconciler()
    return [
        resource_stage(HOSTED_ZONE_STAGE, HostedZoneReconciler(), _same),
        resource_stage(EXECUTION_ROLE_STAGE, ExecutionRoleReconciler(), _same),
        resource_stage(FUNCTION_STAGE, FunctionReconciler(), _same),
        Stage(name=BACKGROUND_TRIGGERS_STAGE, run=register_triggers),
        resource_stage(CERTIFICATE_STAGE, CertificateReconciler(records), _certificate),
        resource_stage(GATEWAY_STAGE, GatewayReconciler(), _gateway),
        resource_stage(GATEWAY_DOMAIN_STAGE, GatewayDomainReconciler(), _gateway),
        resource_stage(DNS_ALIAS_STAGE, records, _alias_to(GATEWAY_DOMAIN_STAGE)),
    ]


def website_stages() -> list[Stage]:
    records = DNSRecordReconciler()
    return [
        resource_stage(HOSTED_ZONE_STAGE, HostedZoneReconciler(), _same),
        resource_stage(BUCKET_STAGE, BucketReconciler(), _same),
        Stage(name=CONTENT_STAGE, run=sync_content),
        resource_stage(CERTIFICATE_STAGE, CertificateReconciler(records), _website_certificate),
        resource_stage(DISTRIBUTION_STAGE, DistributionReconciler(), _same),
        Stage(name=INVALIDATION_STAGE, run=invalidate),
        resource_stage(DNS_ALIAS_STAGE, records, _alias_to(DISTRIBUTION_STAGE)),
    ]


def run_stages(
    kind: str,
    stages: Sequence[Stage],
    config: Any,
    context: DeployContext,
    *,
    skip: Collection[str] = (),
) -> DeploymentOutcome:
    """Run ``stages`` in order, stopping at the first fatal error.

    Skipped stages are only looked up so that later stages can reuse the
    identifier of a resource deployed by a previous run.
    """
    names = [stage.name for stage in stages]
    unknown = sorted(set(skip) - set(names))
    if unknown:
        raise ConfigurationError(
            f"Unknown stage(s) to skip: {', '.join(unknown)} (expected one of: {', '.join(names)})",
            resource=config.domain_name,
        )

    outcome = DeploymentOutcome(kind=kind, domain_name=config.domain_name)
    for stage in stages:
        try:
            if stage.name in skip:
                LOGGER.info("Skipping the %s stage", stage.name)
                outcome.skipped.append(stage.name)
                result = _resolve(stage, config, context)
            else:
                result = stage.run(config, context)
        except DeploymentError as exc:
            LOGGER.error("The %s stage failed: %s", stage.name, exc)
            raise StageFailedError(stage.name, exc, resource=exc.resource or config.domain_name) from exc
        if result is not None:
            context.outputs[stage.name] = result
            outcome.results[stage.name] = result
    return outcome


def _resolve(stage: Stage, config: Any, context: DeployContext) -> ReconciliationResult | None:
    if stage.resolve is None:
        return None
    try:
        result = stage.resolve(config, context)
    except DependencyError as exc:
        LOGGER.info("The skipped %s stage cannot be looked up: %s", stage.name, exc)
        return None
    if result is None:
        LOGGER.info("The skipped %s stage has no remote resource yet", stage.name)
    return result


def deploy(
    config: FunctionConfig | WebsiteConfig,
    *,
    context: DeployContext,
    skip: Collection[str] = (),
) -> DeploymentOutcome:
    if isinstance(config, FunctionConfig):
        LOGGER.info("Starting the deployment of a function to AWS...")
        outcome = run_stages("function", function_stages(), config, context, skip=skip)
    elif isinstance(config, WebsiteConfig):
        LOGGER.info("Starting the deployment of a website to AWS...")
        outcome = run_stages("website", website_stages(), config, context, skip=skip)
    else:
        raise ConfigurationError(f"Unsupported resource configuration: {type(config).__name__}")
    LOGGER.info("Deployment completed")
    LOGGER.info("The %s should be available at %s", outcome.kind, outcome.url)
    return outcome


__all__ = [
    "DeploymentOutcome",
    "Stage",
    "deploy",
    "function_stages",
    "resource_stage",
    "run_stages",
    "website_stages",
]
