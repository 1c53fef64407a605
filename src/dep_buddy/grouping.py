"""
Deduplication and grouping of package updates into pull requests.

The same update is often discovered in several manifests (a package listed
in ``package.json`` and again in a ``deps.yaml``). Updates are collapsed to
one record per ``(name, current_version, new_version)``, keeping the record
from the most relevant manifest, and then partitioned into pull-request
sized groups.
"""

import fnmatch
from enum import Enum
from pathlib import PurePosixPath
from typing import Dict, List, Optional, Sequence

from .classifier import highest_update_type
from .dependency import PackageUpdate, UpdateGroup, UpdateType
from .structured_logging import log_groups_created

NON_MAJOR_GROUP_NAME = "Non-Major Updates"
NON_MAJOR_GROUP_TITLE = "chore(deps): update all non-major dependencies"

VALID_STRATEGIES = ("all", "major", "minor", "patch")


class ManifestKind(Enum):
    """Kinds of manifest an update can come from, valued by dedupe priority."""

    PACKAGE_JSON = 3
    COMPOSER = 2
    CI_WORKFLOW = 1
    OTHER = 0


def _normalize_path(file_path: str) -> PurePosixPath:
    normalized = (file_path or "").strip().replace("\\", "/")
    while normalized.startswith("./"):
        normalized = normalized[2:]
    return PurePosixPath(normalized)


def classify_manifest(file_path: str) -> ManifestKind:
    """Identify which kind of manifest ``file_path`` points at."""
    path = _normalize_path(file_path)
    name = path.name.lower()

    if name == "package.json":
        return ManifestKind.PACKAGE_JSON
    if name == "composer.json":
        return ManifestKind.COMPOSER

    parts = [part.lower() for part in path.parts]
    for index in range(len(parts) - 2):
        if parts[index] == ".github" and parts[index + 1] == "workflows":
            if path.suffix.lower() in (".yml", ".yaml"):
                return ManifestKind.CI_WORKFLOW
    return ManifestKind.OTHER


def file_priority(file_path: str) -> int:
    """Dedupe priority of a source file; higher wins."""
    return classify_manifest(file_path).value


def dedupe_updates(updates: Sequence[PackageUpdate]) -> List[PackageUpdate]:
    """
    Collapse duplicate update facts into one record per key.

    On a collision the incoming record replaces the kept one only if its
    source file has a strictly higher priority. Output follows the order in
    which keys were first seen.
    """
    unique: Dict[str, PackageUpdate] = {}

    for update in updates:
        key = update.dedupe_key
        existing = unique.get(key)
        if existing is None:
            unique[key] = update
        elif file_priority(update.file) > file_priority(existing.file):
            unique[key] = update

    return list(unique.values())


def group_updates(updates: Sequence[PackageUpdate]) -> List[UpdateGroup]:
    """
    Partition updates into pull-request groups.

    Every major update gets its own group; all minor and patch updates share
    a single ``Non-Major Updates`` group with the minor ones first.
    """
    deduplicated = dedupe_updates(updates)

    major_updates = [u for u in deduplicated if u.update_type is UpdateType.MAJOR]
    minor_updates = [u for u in deduplicated if u.update_type is UpdateType.MINOR]
    patch_updates = [u for u in deduplicated if u.update_type is UpdateType.PATCH]

    groups: List[UpdateGroup] = []

    for update in major_updates:
        groups.append(
            UpdateGroup(
                name=f"Major Update - {update.name}",
                update_type=UpdateType.MAJOR,
                title=f"chore(deps): update dependency {update.name} to {update.new_version}",
                updates=[update],
            )
        )

    if minor_updates or patch_updates:
        groups.append(
            UpdateGroup(
                name=NON_MAJOR_GROUP_NAME,
                update_type=UpdateType.MINOR if minor_updates else UpdateType.PATCH,
                title=NON_MAJOR_GROUP_TITLE,
                updates=minor_updates + patch_updates,
            )
        )

    if groups:
        log_groups_created([g.name for g in groups], len(deduplicated))
    return groups


def flatten_groups(groups: Sequence[UpdateGroup]) -> List[PackageUpdate]:
    return [update for group in groups for update in group.updates]


def format_pr_title(updates: Sequence[PackageUpdate]) -> str:
    """Overview title for an arbitrary list of updates."""
    if len(updates) == 1:
        update = updates[0]
        return f"chore(deps): update dependency {update.name} to v{update.new_version}"
    if not updates:
        return "chore(deps): update dependencies"

    highest = highest_update_type(updates)
    return f"chore(deps): update {len(updates)} dependencies ({highest.value})"


def format_commit_message(updates: Sequence[PackageUpdate]) -> str:
    """Commit message for the changes of a single pull request."""
    if len(updates) == 1:
        update = updates[0]
        return f"chore(deps): update dependency {update.name} to {update.new_version}"

    highest = highest_update_type(updates)
    count = len([u for u in updates if u.update_type is highest])
    return f"chore(deps): update {count} {highest.value} dependencies"


def sort_updates_by_priority(updates: Sequence[PackageUpdate]) -> List[PackageUpdate]:
    """Major before minor before patch, then alphabetically by name."""
    return sorted(updates, key=lambda u: (-u.update_type.rank, u.name))


def filter_updates_by_strategy(
    updates: Sequence[PackageUpdate], strategy: Optional[str]
) -> List[PackageUpdate]:
    """
    Keep the updates an update strategy allows.

    ``major`` keeps only major bumps, ``minor`` keeps major and minor, and
    ``patch`` or ``all`` keep everything.
    """
    if not strategy or strategy == "all" or strategy == "patch":
        return list(updates)
    if strategy == "major":
        return [u for u in updates if u.update_type is UpdateType.MAJOR]
    if strategy == "minor":
        return [
            u
            for u in updates
            if u.update_type in (UpdateType.MAJOR, UpdateType.MINOR)
        ]
    return list(updates)


def _matches_any(name: str, patterns: Sequence[str]) -> bool:
    return any(fnmatch.fnmatchcase(name, pattern) for pattern in patterns)


def group_updates_by_config(
    updates: Sequence[PackageUpdate], group_configs: Sequence
) -> List[UpdateGroup]:
    """
    Build the configured named groups first, then group the rest by default.

    Each entry of ``group_configs`` needs ``name`` and ``patterns`` (glob
    patterns over package names) and may set ``strategy``. An update joins the
    first configured group whose pattern matches its name.
    """
    remaining = dedupe_updates(updates)
    groups: List[UpdateGroup] = []

    for group_config in group_configs:
        matched = [u for u in remaining if _matches_any(u.name, group_config.patterns)]
        if not matched:
            continue
        remaining = [u for u in remaining if u not in matched]

        selected = filter_updates_by_strategy(
            matched, getattr(group_config, "strategy", None)
        )
        if not selected:
            continue

        groups.append(
            UpdateGroup(
                name=group_config.name,
                update_type=highest_update_type(selected),
                title=f"chore(deps): update {group_config.name}",
                updates=selected,
            )
        )

    groups.extend(group_updates(remaining))
    return groups
