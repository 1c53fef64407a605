"""Deterministic, ref-safe branch names for update pull requests."""

import re
from datetime import datetime, timezone
from typing import Optional, Sequence

from .dependency import PackageUpdate, UpdateType

DEFAULT_BRANCH_PREFIX = "buddy"

_SLUG_UNSAFE = re.compile(r"[^a-z0-9-]")
_REF_UNSAFE = re.compile(r"[^A-Za-z0-9._-]")
_DOUBLE_DOT = re.compile(r"\.{2,}")


def slugify(name: str) -> str:
    """Lower-case a package name and replace anything outside ``[a-z0-9-]``."""
    return _SLUG_UNSAFE.sub("-", (name or "").lower())


def _ref_safe(value: str) -> str:
    """Make a version string usable inside a git ref component."""
    safe = _REF_UNSAFE.sub("-", (value or "").strip())
    safe = _DOUBLE_DOT.sub(".", safe)
    safe = safe.strip(".")
    if safe.endswith(".lock"):
        safe = safe[: -len(".lock")] + "-lock"
    return safe or "unknown"


def _ref_safe_prefix(prefix: Optional[str]) -> str:
    """Sanitize a branch namespace one path segment at a time."""
    segments = [
        _ref_safe(segment) for segment in (prefix or "").split("/") if segment.strip(" .")
    ]
    return "/".join(segments) or DEFAULT_BRANCH_PREFIX


def _date_stamp(now: Optional[datetime]) -> str:
    moment = now or datetime.now(timezone.utc)
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc)
    return moment.strftime("%Y%m%d")


def generate_branch_name(
    updates: Sequence[PackageUpdate],
    prefix: str = DEFAULT_BRANCH_PREFIX,
    now: Optional[datetime] = None,
) -> str:
    """
    Branch name for a set of updates.

    Args:
        updates: Updates carried by the pull request
        prefix: Branch namespace, ``buddy`` by default
        now: Moment used for the date stamp; current UTC time when omitted

    Returns:
        ``{prefix}/update-{name}-to-{version}-{YYYYMMDD}`` for a single update,
        otherwise a dated ``update-major-dependencies`` or
        ``update-dependencies`` branch.
    """
    prefix = _ref_safe_prefix(prefix)
    date = _date_stamp(now)

    if len(updates) == 1:
        update = updates[0]
        return (
            f"{prefix}/update-{slugify(update.name)}"
            f"-to-{_ref_safe(update.new_version)}-{date}"
        )

    if any(update.update_type is UpdateType.MAJOR for update in updates):
        return f"{prefix}/update-major-dependencies-{date}"
    return f"{prefix}/update-dependencies-{date}"
