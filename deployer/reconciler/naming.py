"""Deterministic resource naming and provider expression helpers."""
from __future__ import annotations

import hashlib
import re

from .errors import ConfigurationError

# Lambda function names and EventBridge rule names share the same limit.
MAX_RESOURCE_NAME_LENGTH = 64
HASH_SUFFIX_LENGTH = 8

MAX_DOMAIN_NAME_LENGTH = 253
_DNS_LABEL = re.compile(r"^(?!-)[a-z0-9-]{1,63}(?<!-)$")
# Record names may carry service labels such as ``_acme-challenge``.
_RECORD_LABEL = re.compile(r"^(?!-)[a-z0-9_-]{1,63}(?<!-)$")
_RULE_NAME_UNSAFE = re.compile(r"[^A-Za-z0-9._-]")

MINUTE_MS = 60 * 1000
HOUR_MS = 60 * MINUTE_MS
DAY_MS = 24 * HOUR_MS


def canonical_dns_name(name: str) -> str:
    """Lower-case a DNS name and strip its trailing dot."""
    return name.strip().rstrip(".").lower()


def is_valid_domain_name(name: str, *, record: bool = False) -> bool:
    if not isinstance(name, str):
        return False
    candidate = canonical_dns_name(name)
    if not candidate or len(candidate) > MAX_DOMAIN_NAME_LENGTH:
        return False
    labels = candidate.split(".")
    if len(labels) < 2:
        return False
    pattern = _RECORD_LABEL if record else _DNS_LABEL
    return all(pattern.match(label) for label in labels)


def validate_domain_name(name: str | None, *, resource: str | None = None, record: bool = False) -> str:
    if not name:
        raise ConfigurationError("A 'domainName' property is required in the configuration", resource=resource)
    if not is_valid_domain_name(name, record=record):
        raise ConfigurationError(f"The domain name '{name}' is not a valid DNS name", resource=resource)
    return canonical_dns_name(name)


def bounded_name(name: str, limit: int = MAX_RESOURCE_NAME_LENGTH) -> str:
    """Truncate ``name`` to ``limit`` characters, suffixing a hash of the full name.

    Names within the limit are returned unchanged. Longer names keep a prefix
    and end with ``-<sha256[:8]>`` of the untruncated name, so two long names
    sharing the same prefix still map to different results.
    """
    if len(name) <= limit:
        return name
    digest = hashlib.sha256(name.encode("utf-8")).hexdigest()[:HASH_SUFFIX_LENGTH]
    prefix = name[: limit - HASH_SUFFIX_LENGTH - 1].rstrip("-")
    return f"{prefix}-{digest}"


def function_name(domain_name: str) -> str:
    """Lambda function name derived from the domain name (``api.example.com`` -> ``api-example-com``)."""
    return bounded_name(canonical_dns_name(domain_name).replace(".", "-"))


def trigger_rule_name(function: str, job_path: str) -> str:
    safe_path = _RULE_NAME_UNSAFE.sub("-", job_path.replace(".", "-"))
    return bounded_name(f"{function}-{safe_path}")


def schedule_expression(rate_ms: int) -> str:
    """Convert a rate in milliseconds to an EventBridge ``rate(...)`` expression.

    Only exact multiples of a minute, hour or day are representable; the
    largest fitting unit is used.
    """
    if isinstance(rate_ms, bool) or not isinstance(rate_ms, int) or rate_ms <= 0:
        raise ConfigurationError(f"A schedule rate must be a positive number of milliseconds (got {rate_ms!r})")
    for unit_ms, unit in ((DAY_MS, "day"), (HOUR_MS, "hour"), (MINUTE_MS, "minute")):
        if rate_ms % unit_ms == 0:
            value = rate_ms // unit_ms
            return f"rate({value} {unit if value == 1 else unit + 's'})"
    raise ConfigurationError(
        f"The schedule rate {rate_ms}ms is not a whole number of minutes, hours or days"
    )


__all__ = [
    "MAX_RESOURCE_NAME_LENGTH",
    "bounded_name",
    "canonical_dns_name",
    "function_name",
    "is_valid_domain_name",
    "schedule_expression",
    "trigger_rule_name",
    "validate_domain_name",
]
