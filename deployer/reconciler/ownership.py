"""Managed-by tag protocol guarding mutations of pre-existing resources."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Mapping

from .errors import OwnershipConflictError
from .settings import DEFAULT_MANAGER_IDENTIFIERS
from .types import MANAGED_BY_TAG, RemoteResourceState

LOGGER = logging.getLogger(__name__)

# Identifier written by the historical static website deployer.
LEGACY_WEBSITE_IDENTIFIER = "aws-s3-hosted-website-v1"


@dataclass(slots=True, frozen=True)
class OwnershipPolicy:
    """Allow-list of managed-by values; the first one is written on create."""

    identifiers: tuple[str, ...] = DEFAULT_MANAGER_IDENTIFIERS

    def __post_init__(self) -> None:
        if not self.identifiers:
            raise ValueError("At least one manager identifier is required")

    @property
    def current(self) -> str:
        return self.identifiers[0]

    def with_legacy(self, *identifiers: str) -> "OwnershipPolicy":
        extra = tuple(value for value in identifiers if value not in self.identifiers)
        return OwnershipPolicy(identifiers=self.identifiers + extra)

    def creation_tags(self) -> dict[str, str]:
        return {MANAGED_BY_TAG: self.current}

    def is_owned(self, tags: Mapping[str, str] | None) -> bool:
        if not tags:
            return False
        return tags.get(MANAGED_BY_TAG) in self.identifiers

    def ensure_owned(self, state: RemoteResourceState, *, kind: str, resource: str | None = None) -> None:
        """Raise when ``state`` was not created by this tool."""
        if self.is_owned(state.tags):
            return
        LOGGER.error(
            "Refusing to modify %s %s: managed-by tag is %r",
            kind,
            state.identifier,
            state.ownership_tag,
        )
        raise OwnershipConflictError(
            f"Cannot modify a {kind} that was not originally created by this tool ({kind}: '{state.identifier}')",
            resource=resource,
            identifier=state.identifier,
        )


def tags_from_tag_set(tag_set: Iterable[Mapping[str, str]] | None) -> dict[str, str]:
    """Convert ``[{"Key": ..., "Value": ...}]`` lists into a plain mapping."""
    return {tag.get("Key"): tag.get("Value") for tag in tag_set or () if tag.get("Key")}


def tag_set_from_tags(tags: Mapping[str, str]) -> list[dict[str, str]]:
    return [{"Key": key, "Value": value} for key, value in tags.items()]


__all__ = [
    "LEGACY_WEBSITE_IDENTIFIER",
    "OwnershipPolicy",
    "tag_set_from_tags",
    "tags_from_tag_set",
]
