"""Deployment job wiring the resolved configuration to the orchestrator."""
from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import Any, Callable, Collection

import boto3

from ..reconciler import orchestrator
from ..reconciler.client import AwsFacade
from ..reconciler.engine import DeployContext
from ..reconciler.errors import ConfigurationError
from ..reconciler.orchestrator import DeploymentOutcome
from ..reconciler.settings import DeploySettings, load_settings
from ..reconciler.types import FunctionConfig, WebsiteConfig, configs_from_dict

LOGGER = logging.getLogger(__name__)


def load_config(path: str) -> FunctionConfig | WebsiteConfig:
    """Parse a resolved configuration document from ``path``."""
    try:
        payload = json.loads(Path(path).read_text())
    except FileNotFoundError as exc:
        raise ConfigurationError(f"The configuration file '{path}' does not exist") from exc
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"The configuration file '{path}' is not valid JSON ({exc.msg})") from exc
    return configs_from_dict(payload)


def build_session(
    config: FunctionConfig | WebsiteConfig,
    settings: DeploySettings,
    *,
    profile: str | None = None,
    region: str | None = None,
):  # type: ignore[no-untyped-def]
    return boto3.Session(
        profile_name=profile or config.profile or settings.profile,
        region_name=region or config.region,
    )


def run_deploy(
    config: FunctionConfig | WebsiteConfig,
    *,
    skip: Collection[str] = (),
    session=None,
    aws=None,
    settings: DeploySettings | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> DeploymentOutcome:
    """Deploy ``config`` and return the per-stage results."""
    settings = settings or load_settings()
    facade = aws or AwsFacade(
        session or build_session(config, settings),
        region=config.region,
        max_listing_pages=settings.max_listing_pages,
    )
    context = DeployContext(client=facade, settings=settings, sleep=sleep)
    outcome = orchestrator.deploy(config, context=context, skip=skip)
    LOGGER.info("Deployment summary: %s", json.dumps(serialize_outcome(outcome), default=str))
    return outcome


def serialize_outcome(outcome: DeploymentOutcome) -> dict[str, Any]:
    """Return a JSON-serializable representation of the deployment outcome."""
    return {
        "kind": outcome.kind,
        "domain_name": outcome.domain_name,
        "url": outcome.url,
        "changed": outcome.changed,
        "skipped": list(outcome.skipped),
        "stages": {
            stage: {
                "resource": result.resource,
                "kind": result.kind,
                "action": result.action,
                "identifier": result.identifier,
            }
            for stage, result in outcome.results.items()
        },
    }


__all__ = ["build_session", "load_config", "run_deploy", "serialize_outcome"]
