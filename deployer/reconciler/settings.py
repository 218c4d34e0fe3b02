"""Environment-driven settings shared by every reconciler."""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Mapping

LOGGER = logging.getLogger(__name__)

MANAGER_IDENTIFIERS_ENV = "DEPLOYER_MANAGER_IDENTIFIERS"
RETRY_ATTEMPTS_ENV = "DEPLOYER_RETRY_ATTEMPTS"
RETRY_BACKOFF_ENV = "DEPLOYER_RETRY_BACKOFF_SECONDS"
MAX_LISTING_PAGES_ENV = "DEPLOYER_MAX_LISTING_PAGES"

DEFAULT_MANAGER_IDENTIFIERS = ("boostr-v1", "simple-deployment-v1")
DEFAULT_RETRY_ATTEMPTS = 10
DEFAULT_RETRY_BACKOFF_SECONDS = 3.0
DEFAULT_MAX_LISTING_PAGES = 10
DEFAULT_REGION = "us-east-1"


@dataclass(slots=True, frozen=True)
class DeploySettings:
    manager_identifiers: tuple[str, ...] = DEFAULT_MANAGER_IDENTIFIERS
    retry_attempts: int = DEFAULT_RETRY_ATTEMPTS
    retry_backoff_seconds: float = DEFAULT_RETRY_BACKOFF_SECONDS
    max_listing_pages: int = DEFAULT_MAX_LISTING_PAGES
    region: str = DEFAULT_REGION
    profile: str | None = None


def load_settings(env: Mapping[str, str] | None = None) -> DeploySettings:
    """Build settings from environment variables, falling back to defaults."""
    env = os.environ if env is None else env
    identifiers = tuple(
        value.strip() for value in env.get(MANAGER_IDENTIFIERS_ENV, "").split(",") if value.strip()
    )
    return DeploySettings(
        manager_identifiers=identifiers or DEFAULT_MANAGER_IDENTIFIERS,
        retry_attempts=_int(env, RETRY_ATTEMPTS_ENV, DEFAULT_RETRY_ATTEMPTS),
        retry_backoff_seconds=_float(env, RETRY_BACKOFF_ENV, DEFAULT_RETRY_BACKOFF_SECONDS),
        max_listing_pages=_int(env, MAX_LISTING_PAGES_ENV, DEFAULT_MAX_LISTING_PAGES),
        region=env.get("AWS_REGION") or env.get("AWS_DEFAULT_REGION") or DEFAULT_REGION,
        profile=env.get("AWS_PROFILE") or None,
    )


def _int(env: Mapping[str, str], key: str, default: int) -> int:
    raw = env.get(key, "")
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        LOGGER.warning("Ignoring invalid %s value: %s", key, raw)
        return default
    return value if value > 0 else default


def _float(env: Mapping[str, str], key: str, default: float) -> float:
    raw = env.get(key, "")
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        LOGGER.warning("Ignoring invalid %s value: %s", key, raw)
        return default


__all__ = ["DeploySettings", "load_settings"]
