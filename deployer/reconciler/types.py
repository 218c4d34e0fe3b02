"""Typed value objects shared across reconciler modules."""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Mapping, Sequence

from .errors import ConfigurationError
from .naming import canonical_dns_name, function_name, schedule_expression, trigger_rule_name, validate_domain_name
from .settings import DEFAULT_REGION

MANAGED_BY_TAG = "managed-by"

DEFAULT_LAMBDA_RUNTIME = "nodejs20.x"
DEFAULT_LAMBDA_HANDLER = "handler.handler"
DEFAULT_LAMBDA_EXECUTION_ROLE = "deployer-backend-lambda-role-v1"
DEFAULT_LAMBDA_MEMORY_SIZE = 128
DEFAULT_LAMBDA_TIMEOUT = 10

DEFAULT_INDEX_PAGE = "index.html"
DEFAULT_IMMUTABLE_FILES = ("**/*.immutable.*",)
DEFAULT_CLOUDFRONT_PRICE_CLASS = "PriceClass_100"
DEFAULT_ROUTE_53_TTL = 300

DEFAULT_CORS_CONFIGURATION: Mapping[str, Any] = MappingProxyType(
    {
        "AllowOrigins": ("*",),
        "AllowHeaders": ("content-type",),
        "AllowMethods": ("GET", "POST", "OPTIONS"),
        "ExposeHeaders": ("*",),
        "MaxAge": 3600,
    }
)

CREATED = "created"
UPDATED = "updated"
UNCHANGED = "unchanged"
SKIPPED = "skipped"

PENDING = "pending"
SUCCEEDED = "succeeded"
FAILED = "failed"

# Deployment stages; results are published under these names.
HOSTED_ZONE_STAGE = "hosted-zone"
EXECUTION_ROLE_STAGE = "execution-role"
FUNCTION_STAGE = "function"
BACKGROUND_TRIGGERS_STAGE = "background-triggers"
CERTIFICATE_STAGE = "certificate"
GATEWAY_STAGE = "gateway"
GATEWAY_DOMAIN_STAGE = "gateway-domain"
BUCKET_STAGE = "bucket"
CONTENT_STAGE = "content"
DISTRIBUTION_STAGE = "distribution"
INVALIDATION_STAGE = "invalidation"
DNS_ALIAS_STAGE = "dns-alias"


def _frozen_mapping(value: Mapping[str, Any] | None) -> Mapping[str, Any]:
    return MappingProxyType(dict(value or {}))


@dataclass(slots=True, frozen=True)
class BackgroundJob:
    """A scheduled or event-driven invocation declared by a function's code."""

    path: str
    rate_ms: int | None = None
    event_pattern: Mapping[str, Any] | None = None

    def __post_init__(self) -> None:
        if not self.path:
            raise ConfigurationError("A background job requires a 'path'")
        if (self.rate_ms is None) == (self.event_pattern is None):
            raise ConfigurationError(
                f"The background job '{self.path}' must declare exactly one of a schedule rate or an event pattern"
            )
        if self.rate_ms is not None:
            schedule_expression(self.rate_ms)
        else:
            object.__setattr__(self, "event_pattern", _frozen_mapping(self.event_pattern))

    @property
    def trigger_kind(self) -> str:
        return "schedule" if self.rate_ms is not None else "event"

    @property
    def schedule(self) -> str | None:
        return schedule_expression(self.rate_ms) if self.rate_ms is not None else None

    @property
    def pattern(self) -> str | None:
        if self.event_pattern is None:
            return None
        return json.dumps(dict(self.event_pattern), sort_keys=True, separators=(",", ":"))


@dataclass(slots=True, frozen=True)
class FunctionConfig:
    """Desired state of a backend function served through an HTTP gateway."""

    domain_name: str
    directory: str
    region: str = DEFAULT_REGION
    runtime: str = DEFAULT_LAMBDA_RUNTIME
    handler: str = DEFAULT_LAMBDA_HANDLER
    execution_role: str = DEFAULT_LAMBDA_EXECUTION_ROLE
    memory_size: int = DEFAULT_LAMBDA_MEMORY_SIZE
    timeout_seconds: int = DEFAULT_LAMBDA_TIMEOUT
    environment: Mapping[str, str] = field(default_factory=dict)
    reserved_concurrency: int | None = None
    background_jobs: Sequence[BackgroundJob] = ()
    cors: Mapping[str, Any] = field(default_factory=lambda: dict(DEFAULT_CORS_CONFIGURATION))
    profile: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "domain_name", validate_domain_name(self.domain_name))
        if not self.directory:
            raise ConfigurationError("A 'directory' property is required in the configuration", resource=self.domain_name)
        if not self.region:
            raise ConfigurationError("A 'region' property is required in the configuration", resource=self.domain_name)
        if not 128 <= int(self.memory_size) <= 10240:
            raise ConfigurationError(f"Invalid memory size: {self.memory_size}", resource=self.domain_name)
        if not 1 <= int(self.timeout_seconds) <= 900:
            raise ConfigurationError(f"Invalid timeout: {self.timeout_seconds}", resource=self.domain_name)
        if self.reserved_concurrency is not None and int(self.reserved_concurrency) < 0:
            raise ConfigurationError(
                f"Invalid reserved concurrency: {self.reserved_concurrency}", resource=self.domain_name
            )
        environment = {str(key): str(value) for key, value in dict(self.environment or {}).items()}
        object.__setattr__(self, "environment", MappingProxyType(environment))
        object.__setattr__(self, "background_jobs", tuple(self.background_jobs))
        object.__setattr__(self, "cors", _frozen_mapping(self.cors))
        paths = [job.path for job in self.background_jobs]
        if len(paths) != len(set(paths)):
            raise ConfigurationError("Background job paths must be unique", resource=self.domain_name)
        rules: dict[str, str] = {}
        for path in paths:
            rule = trigger_rule_name(self.function_name, path)
            if rule in rules:
                raise ConfigurationError(
                    f"Background jobs {rules[rule]!r} and {path!r} map to the same rule name {rule}",
                    resource=self.domain_name,
                )
            rules[rule] = path

    @property
    def function_name(self) -> str:
        return function_name(self.domain_name)


@dataclass(slots=True, frozen=True)
class WebsiteConfig:
    """Desired state of a static website served from S3 through CloudFront."""

    domain_name: str
    directory: str
    region: str = DEFAULT_REGION
    index_page: str = DEFAULT_INDEX_PAGE
    immutable_file_patterns: Sequence[str] = DEFAULT_IMMUTABLE_FILES
    price_class: str = DEFAULT_CLOUDFRONT_PRICE_CLASS
    profile: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "domain_name", validate_domain_name(self.domain_name))
        if not self.directory:
            raise ConfigurationError("A 'directory' property is required in the configuration", resource=self.domain_name)
        if not self.region:
            raise ConfigurationError("A 'region' property is required in the configuration", resource=self.domain_name)
        if not self.index_page or "/" in self.index_page:
            raise ConfigurationError(f"Invalid index page: {self.index_page!r}", resource=self.domain_name)
        object.__setattr__(self, "immutable_file_patterns", tuple(self.immutable_file_patterns))

    @property
    def bucket_name(self) -> str:
        return self.domain_name


@dataclass(slots=True, frozen=True)
class CertificateConfig:
    domain_name: str
    region: str = DEFAULT_REGION

    def __post_init__(self) -> None:
        object.__setattr__(self, "domain_name", validate_domain_name(self.domain_name))


@dataclass(slots=True, frozen=True)
class DNSRecordConfig:
    """A CNAME record or an A alias record in the hosted zone of ``domain_name``."""

    domain_name: str
    record_type: str
    value: str
    alias_hosted_zone_id: str | None = None
    ttl: int = DEFAULT_ROUTE_53_TTL

    def __post_init__(self) -> None:
        object.__setattr__(self, "domain_name", validate_domain_name(self.domain_name, record=True))
        if self.record_type not in ("A", "CNAME"):
            raise ConfigurationError(f"Unsupported record type: {self.record_type}", resource=self.domain_name)
        if not self.value:
            raise ConfigurationError("A DNS record requires a value", resource=self.domain_name)
        if self.record_type == "A" and not self.alias_hosted_zone_id:
            raise ConfigurationError("An alias record requires the target hosted zone", resource=self.domain_name)
        object.__setattr__(self, "value", canonical_dns_name(self.value))


@dataclass(slots=True, frozen=True)
class GatewayConfig:
    domain_name: str
    region: str = DEFAULT_REGION
    cors: Mapping[str, Any] = field(default_factory=lambda: dict(DEFAULT_CORS_CONFIGURATION))

    def __post_init__(self) -> None:
        object.__setattr__(self, "domain_name", validate_domain_name(self.domain_name))
        object.__setattr__(self, "cors", _frozen_mapping(self.cors))


@dataclass(slots=True)
class RemoteResourceState:
    """Snapshot of a remote resource as observed during one reconciliation run."""

    identifier: str
    name: str
    tags: Mapping[str, str] = field(default_factory=dict)
    attributes: Mapping[str, Any] = field(default_factory=dict)

    @property
    def ownership_tag(self) -> str | None:
        return self.tags.get(MANAGED_BY_TAG)


@dataclass(slots=True, frozen=True)
class OperationStatus:
    state: str
    detail: str | None = None

    @property
    def terminal(self) -> bool:
        return self.state in (SUCCEEDED, FAILED)


@dataclass(slots=True)
class PendingOperation:
    """An in-flight provider mutation polled by the waiter until it settles."""

    description: str
    check: Callable[[], OperationStatus]
    poll_interval_ms: int
    max_wait_ms: int
    resource: str | None = None


@dataclass(slots=True)
class ReconciliationResult:
    """Describes the result of reconciling one resource."""

    resource: str
    kind: str
    action: str
    identifier: str
    attributes: Mapping[str, Any] = field(default_factory=dict)
    duration_ms: float | None = None

    @property
    def changed(self) -> bool:
        return self.action != UNCHANGED


@dataclass(slots=True, frozen=True)
class FileEntry:
    path: str
    size: int
    md5: str


@dataclass(slots=True, frozen=True)
class ContentDiff:
    to_upload: frozenset[str]
    to_delete: frozenset[str]
    unchanged: frozenset[str]

    @property
    def changed_paths(self) -> list[str]:
        return sorted(self.to_upload | self.to_delete)


def configs_from_dict(payload: Mapping[str, Any]) -> FunctionConfig | WebsiteConfig:
    """Build a resource configuration from a resolved configuration document.

    The document holds a single ``function`` or ``website`` entry whose keys
    follow the configuration file conventions (camelCase, nested ``lambda`` and
    ``cloudFront`` sections).
    """
    if not isinstance(payload, Mapping):
        raise ConfigurationError("The resolved configuration must be a JSON object")
    if "function" in payload:
        return _function_from_dict(payload["function"])
    if "website" in payload:
        return _website_from_dict(payload["website"])
    raise ConfigurationError("The resolved configuration must contain a 'function' or a 'website' entry")


def _function_from_dict(raw: Mapping[str, Any]) -> FunctionConfig:
    _require(raw, "domainName", "directory")
    lambda_cfg = raw.get("lambda") or {}
    kwargs: dict[str, Any] = {
        "domain_name": raw["domainName"],
        "directory": raw["directory"],
        "environment": raw.get("environment") or {},
        "background_jobs": tuple(_job_from_dict(job) for job in raw.get("backgroundJobs") or ()),
        "reserved_concurrency": lambda_cfg.get("reservedConcurrentExecutions"),
        "profile": raw.get("profile"),
    }
    optional = {
        "region": raw.get("region"),
        "runtime": lambda_cfg.get("runtime"),
        "handler": lambda_cfg.get("handler"),
        "execution_role": lambda_cfg.get("executionRole"),
        "memory_size": lambda_cfg.get("memorySize"),
        "timeout_seconds": lambda_cfg.get("timeout"),
        "cors": raw.get("cors"),
    }
    kwargs.update({key: value for key, value in optional.items() if value is not None})
    return FunctionConfig(**kwargs)


def _website_from_dict(raw: Mapping[str, Any]) -> WebsiteConfig:
    _require(raw, "domainName", "directory")
    cloud_front = raw.get("cloudFront") or {}
    kwargs: dict[str, Any] = {
        "domain_name": raw["domainName"],
        "directory": raw["directory"],
        "profile": raw.get("profile"),
    }
    optional = {
        "region": raw.get("region"),
        "index_page": raw.get("indexPage"),
        "immutable_file_patterns": raw.get("immutableFiles"),
        "price_class": cloud_front.get("priceClass"),
    }
    kwargs.update({key: value for key, value in optional.items() if value is not None})
    return WebsiteConfig(**kwargs)


def _job_from_dict(raw: Mapping[str, Any]) -> BackgroundJob:
    _require(raw, "path")
    schedule = raw.get("schedule") or {}
    return BackgroundJob(
        path=str(raw["path"]),
        rate_ms=schedule.get("rate"),
        event_pattern=raw.get("eventPattern"),
    )


def _require(raw: Mapping[str, Any], *keys: str) -> None:
    if not isinstance(raw, Mapping):
        raise ConfigurationError("Resource configuration entries must be JSON objects")
    for key in keys:
        if not raw.get(key):
            raise ConfigurationError(
                f"A '{key}' property is required in the configuration", resource=raw.get("domainName")
            )


__all__ = [
    "BackgroundJob",
    "CertificateConfig",
    "ContentDiff",
    "DNSRecordConfig",
    "FileEntry",
    "FunctionConfig",
    "GatewayConfig",
    "OperationStatus",
    "PendingOperation",
    "ReconciliationResult",
    "RemoteResourceState",
    "WebsiteConfig",
    "configs_from_dict",
]
