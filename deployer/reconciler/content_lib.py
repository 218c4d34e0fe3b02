"""Synchronization of a local static directory with a website bucket."""
from __future__ import annotations

import base64
import hashlib
import json
import logging
import mimetypes
import os
import time
from fnmatch import fnmatchcase
from typing import Iterable, Mapping, Sequence

from .engine import DeployContext, step_result
from .errors import ConfigurationError
from .types import (
    BUCKET_STAGE,
    CONTENT_STAGE,
    UNCHANGED,
    UPDATED,
    ContentDiff,
    FileEntry,
    ReconciliationResult,
    WebsiteConfig,
)

LOGGER = logging.getLogger(__name__)

MANIFEST_KEY = ".deployer-manifest.json"
IMMUTABLE_MAX_AGE_SECONDS = 3153600000
DEFAULT_CONTENT_TYPE = "application/octet-stream"


def matches_patterns(path: str, patterns: Iterable[str]) -> bool:
    """Glob match where ``**/`` also matches zero directories."""
    for pattern in patterns:
        if fnmatchcase(path, pattern):
            return True
        if pattern.startswith("**/") and fnmatchcase(path, pattern[3:]):
            return True
    return False


def _md5_of_file(path: str) -> str:
    digest = hashlib.md5()
    with open(path, "rb") as handle:
        for chunk in iter(lambda: handle.read(1024 * 1024), b""):
            digest.update(chunk)
    return digest.hexdigest()


def build_local_inventory(directory: str) -> dict[str, FileEntry]:
    """Relative path -> entry for every file under ``directory``, dotfiles excluded."""
    if not os.path.isdir(directory):
        raise ConfigurationError(f"The website directory '{directory}' does not exist")
    inventory: dict[str, FileEntry] = {}
    for root, dirs, files in os.walk(directory):
        dirs[:] = sorted(name for name in dirs if not name.startswith("."))
        for filename in sorted(files):
            if filename.startswith("."):
                continue
            absolute = os.path.join(root, filename)
            path = os.path.relpath(absolute, directory).replace(os.sep, "/")
            inventory[path] = FileEntry(path=path, size=os.path.getsize(absolute), md5=_md5_of_file(absolute))
    return inventory


def list_remote(context: DeployContext, bucket: str) -> dict[str, FileEntry]:
    """Remote objects keyed by path, side-car objects excluded."""
    return {
        entry.path: entry
        for entry in context.client.list_objects(bucket)
        if not entry.path.split("/")[-1].startswith(".")
    }


def compute_diff(
    local: Mapping[str, FileEntry],
    remote: Mapping[str, FileEntry],
    patterns: Sequence[str],
    previous_patterns: Sequence[str] | None,
) -> ContentDiff:
    """Classify paths into uploads, deletions and untouched files.

    A file is uploaded when it is missing remotely, its size or md5 differ,
    or its immutability under ``patterns`` differs from ``previous_patterns``
    (the manifest of the last synchronization; ``None`` when unknown).
    """
    previous = list(patterns if previous_patterns is None else previous_patterns)
    to_upload = set()
    unchanged = set()
    for path, entry in local.items():
        existing = remote.get(path)
        same_bytes = existing is not None and existing.size == entry.size and existing.md5 == entry.md5
        if same_bytes and matches_patterns(path, patterns) == matches_patterns(path, previous):
            unchanged.add(path)
        else:
            to_upload.add(path)
    to_delete = set(remote) - set(local)
    return ContentDiff(to_upload=frozenset(to_upload), to_delete=frozenset(to_delete), unchanged=frozenset(unchanged))


def load_manifest(context: DeployContext, bucket: str) -> list[str] | None:
    manifest = context.client.get_json_object(bucket, MANIFEST_KEY)
    if not manifest:
        return None
    patterns = manifest.get("immutableFiles")
    if not isinstance(patterns, list):
        LOGGER.warning("Ignoring the manifest of %s: no immutable file patterns recorded", bucket)
        return None
    return [str(pattern) for pattern in patterns]


def save_manifest(context: DeployContext, bucket: str, patterns: Sequence[str]) -> None:
    body = json.dumps({"immutableFiles": list(patterns)}, indent=2).encode("utf-8")
    context.client.put_object(
        bucket,
        MANIFEST_KEY,
        body=body,
        content_type="application/json",
        content_md5=base64.b64encode(hashlib.md5(body).digest()).decode("ascii"),
    )


def _upload(context: DeployContext, bucket: str, directory: str, entry: FileEntry, immutable: bool) -> None:
    absolute = os.path.join(directory, *entry.path.split("/"))
    LOGGER.info("Uploading '%s' (%d bytes) to S3...", entry.path, entry.size)
    with open(absolute, "rb") as handle:
        body = handle.read()
    content_type, _ = mimetypes.guess_type(entry.path)
    context.client.put_object(
        bucket,
        entry.path,
        body=body,
        content_type=content_type or DEFAULT_CONTENT_TYPE,
        content_md5=base64.b64encode(bytes.fromhex(entry.md5)).decode("ascii"),
        cache_control=f"max-age={IMMUTABLE_MAX_AGE_SECONDS}" if immutable else None,
    )


def summarize(added: int, updated: int, removed: int) -> str:
    parts = [
        f"{count} file{'s' if count > 1 else ''} {operation}"
        for operation, count in (("added", added), ("updated", updated), ("removed", removed))
        if count
    ]
    return ", ".join(parts) or "no changes"


def synchronize(config: WebsiteConfig, context: DeployContext, *, bucket: str | None = None) -> list[str]:
    """Bring the bucket in line with ``config.directory``; return the changed paths."""
    bucket = bucket or config.bucket_name
    LOGGER.info("Synchronizing the files of %s...", bucket)
    local = build_local_inventory(config.directory)
    remote = list_remote(context, bucket)
    previous_patterns = load_manifest(context, bucket)
    patterns = list(config.immutable_file_patterns)

    diff = compute_diff(local, remote, patterns, previous_patterns)
    for path in sorted(diff.to_upload):
        _upload(context, bucket, config.directory, local[path], matches_patterns(path, patterns))
    for path in sorted(diff.to_delete):
        LOGGER.info("Removing '%s' from S3...", path)
        context.client.delete_object(bucket, path)
    if previous_patterns != patterns:
        save_manifest(context, bucket, patterns)

    added = len(diff.to_upload - set(remote))
    LOGGER.info(
        "Synchronization completed (%s)",
        summarize(added, len(diff.to_upload) - added, len(diff.to_delete)),
    )
    return diff.changed_paths


def sync_content(config: WebsiteConfig, context: DeployContext) -> ReconciliationResult:
    started = time.perf_counter()
    bucket = context.require(BUCKET_STAGE, needed_by=CONTENT_STAGE, resource=config.domain_name)
    changes = synchronize(config, context, bucket=bucket.identifier)
    return step_result(
        resource=config.domain_name,
        kind=CONTENT_STAGE,
        action=UPDATED if changes else UNCHANGED,
        identifier=bucket.identifier,
        started=started,
        attributes={"changes": changes},
    )


def invalidation_paths(changes: Iterable[str], index_page: str) -> list[str]:
    """CloudFront paths to invalidate; index pages also invalidate their directory."""
    paths: list[str] = []
    for change in changes:
        paths.append("/" + change)
        if change == index_page or change.endswith("/" + index_page):
            # 'section/index.html' => /section/
            paths.append("/" + change[: -len(index_page)])
    return paths


__all__ = [
    "MANIFEST_KEY",
    "build_local_inventory",
    "compute_diff",
    "invalidation_paths",
    "list_remote",
    "load_manifest",
    "matches_patterns",
    "save_manifest",
    "summarize",
    "sync_content",
    "synchronize",
]
