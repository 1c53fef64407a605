"""
Version classification for dependency updates.

Decides whether moving from one version to another is a major, minor or
patch bump, and answers npm-style range questions (``^1.2.0``, ``~1.2``,
``>=1.0.0 <2``) on top of ``packaging``'s version ordering.
"""

import re
from typing import Iterable, List, Optional, Tuple

from packaging.specifiers import InvalidSpecifier, SpecifierSet
from packaging.version import InvalidVersion, Version

from .dependency import PackageUpdate, UpdateType

_PREFIX_PATTERN = re.compile(r"^[v^~>=<@\s]+")
_LEADING_DIGITS = re.compile(r"\d+")
_COMPARATOR_PATTERN = re.compile(r"^(>=|<=|>|<|=)?\s*(.+)$")


def clean_version(version: Optional[str]) -> str:
    """Strip range operators and ``v``/``@`` prefixes from a version spec."""
    return _PREFIX_PATTERN.sub("", str(version or "").strip())


def _parse(version: str) -> Optional[Version]:
    try:
        return Version(version)
    except (InvalidVersion, TypeError):
        return None


def compare_versions(left: str, right: str) -> Optional[int]:
    """
    Compare two cleaned versions semantically.

    Returns:
        -1, 0 or 1 like a classic ``cmp``; None when either side is not a
        version ``packaging`` understands.
    """
    left_version = _parse(left)
    right_version = _parse(right)
    if left_version is None or right_version is None:
        return None
    if left_version == right_version:
        return 0
    return 1 if left_version > right_version else -1


def _numeric_parts(version: str) -> Tuple[int, int, int]:
    """
    Zero-padded ``(major, minor, patch)``.

    Components without leading digits count as 0. Raises ValueError when the
    version has no numeric component at all.
    """
    components = version.split(".")
    parts: List[int] = []
    found_digit = False
    for component in components[:3]:
        match = _LEADING_DIGITS.match(component)
        if match:
            found_digit = True
            parts.append(int(match.group(0)))
        else:
            parts.append(0)
    if not found_digit:
        raise ValueError(f"No numeric component in version: {version!r}")
    while len(parts) < 3:
        parts.append(0)
    return parts[0], parts[1], parts[2]


def _explicit_parts(version: str) -> List[int]:
    """Numeric components that are actually written, stopping at a wildcard."""
    parts = []
    for component in version.split(".")[:3]:
        if component in ("x", "X", "*", ""):
            break
        match = _LEADING_DIGITS.match(component)
        if not match:
            raise ValueError(f"Invalid version component: {component!r}")
        parts.append(int(match.group(0)))
    return parts


def _version_tuple(parts: Iterable[int]) -> Version:
    padded = list(parts) + [0, 0, 0]
    return Version(".".join(str(p) for p in padded[:3]))


def _caret_bounds(base: str) -> Tuple[Version, Version]:
    parts = _explicit_parts(base)
    if not parts:
        raise ValueError("Empty caret range")
    major = parts[0]
    minor = parts[1] if len(parts) > 1 else 0
    patch = parts[2] if len(parts) > 2 else 0
    if major > 0 or len(parts) == 1:
        upper = (major + 1, 0, 0)
    elif minor > 0 or len(parts) == 2:
        upper = (0, minor + 1, 0)
    else:
        upper = (0, 0, patch + 1)
    return _version_tuple(parts), _version_tuple(upper)


def _tilde_bounds(base: str) -> Tuple[Version, Version]:
    parts = _explicit_parts(base)
    if not parts:
        raise ValueError("Empty tilde range")
    if len(parts) >= 2:
        upper = (parts[0], parts[1] + 1, 0)
    else:
        upper = (parts[0] + 1, 0, 0)
    return _version_tuple(parts), _version_tuple(upper)


def _wildcard_bounds(base: str) -> Optional[Tuple[Version, Version]]:
    """Bounds for ``1.x`` / ``1.2.*`` style specs, None for full versions."""
    parts = _explicit_parts(base)
    if len(parts) >= 3:
        return None
    if not parts:
        raise ValueError("Bare wildcard has no bounds")
    upper = list(parts)
    upper[-1] += 1
    return _version_tuple(parts), _version_tuple(upper)


def _satisfies_comparator(version: Version, comparator: str) -> bool:
    if comparator in ("*", "x", "X"):
        return True

    if comparator.startswith("^"):
        lower, upper = _caret_bounds(clean_version(comparator))
        return lower <= version < upper

    if comparator.startswith("~"):
        lower, upper = _tilde_bounds(clean_version(comparator.lstrip("~=>")))
        return lower <= version < upper

    match = _COMPARATOR_PATTERN.match(comparator)
    if not match:
        return False
    operator, target = match.group(1) or "", match.group(2).lstrip("v")

    if operator in ("", "="):
        bounds = _wildcard_bounds(target)
        if bounds is not None:
            lower, upper = bounds
            return lower <= version < upper
        operator = "=="

    specifier = SpecifierSet(f"{operator}{target}")
    return specifier.contains(version, prereleases=True)


def satisfies_range(version: str, range_spec: str) -> bool:
    """
    Check a version against an npm-style range.

    Supports caret and tilde ranges, comparison operators, ``x``/``*``
    wildcards, space-joined comparator sets and ``||`` alternatives.
    Never raises; anything unparseable simply does not satisfy.
    """
    parsed = _parse(clean_version(version))
    if parsed is None or not range_spec or not range_spec.strip():
        return False

    try:
        for alternative in range_spec.split("||"):
            comparators = alternative.split()
            if comparators and all(
                _satisfies_comparator(parsed, comparator) for comparator in comparators
            ):
                return True
    except (InvalidVersion, InvalidSpecifier, ValueError):
        return False
    return False


def classify(current_version: str, new_version: str) -> UpdateType:
    """
    Classify the move from ``current_version`` to ``new_version``.

    Non-upgrades are always ``patch``. When the versions cannot be compared
    structurally, range satisfaction decides, and anything still unknown is
    treated as ``major``.
    """
    clean_current = clean_version(current_version)
    clean_new = clean_version(new_version)
    if clean_current == clean_new:
        return UpdateType.PATCH

    order = compare_versions(clean_new, clean_current)
    if order is not None and order <= 0:
        return UpdateType.PATCH

    try:
        current_major, current_minor, _ = _numeric_parts(clean_current)
        new_major, new_minor, _ = _numeric_parts(clean_new)
    except ValueError:
        if satisfies_range(clean_new, f"~{clean_current}"):
            return UpdateType.PATCH
        if satisfies_range(clean_new, f"^{clean_current}"):
            return UpdateType.MINOR
        return UpdateType.MAJOR

    if new_major > current_major:
        return UpdateType.MAJOR
    if new_major == current_major and new_minor > current_minor:
        return UpdateType.MINOR
    return UpdateType.PATCH


def is_upgrade(current_version: str, new_version: str) -> bool:
    """True when ``new_version`` is semantically newer than ``current_version``."""
    clean_current = clean_version(current_version)
    clean_new = clean_version(new_version)
    order = compare_versions(clean_new, clean_current)
    if order is not None:
        return order > 0
    try:
        return _numeric_parts(clean_new) > _numeric_parts(clean_current)
    except ValueError:
        return False


def highest_update_type(updates: Iterable[PackageUpdate]) -> UpdateType:
    """The most severe update type present; ``patch`` for an empty list."""
    highest = UpdateType.PATCH
    for update in updates:
        if update.update_type.rank > highest.rank:
            highest = update.update_type
    return highest
