"""
Auto-close evaluation for previously opened update pull requests.

A pull request opened under an older configuration can become invalid when
the configuration changes: ``respect_latest`` turned on means dynamic
versions such as ``latest`` must no longer be pinned, and a new entry in
``ignore_paths`` means the manifest it touched is no longer managed.
"""

import fnmatch
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Sequence

from .dependency import RecoveredFact
from .state_codec import decode_state
from .structured_logging import log_auto_close_decision

DYNAMIC_VERSION_INDICATORS = frozenset(
    ["latest", "*", "main", "master", "develop", "dev"]
)

RULE_RESPECT_LATEST = "respect_latest"
RULE_IGNORE_PATHS = "ignore_paths"


@dataclass(frozen=True)
class AutoCloseDecision:
    """Outcome of an auto-close evaluation."""

    should_close: bool
    rule: Optional[str]
    reason: str


def is_dynamic_version(version: str) -> bool:
    """True for floating versions like ``latest`` or ``*``."""
    return (version or "").strip().strip("`").strip().lower() in DYNAMIC_VERSION_INDICATORS


def _normalize_path(path: str) -> str:
    normalized = (path or "").strip().replace("\\", "/")
    while normalized.startswith("./"):
        normalized = normalized[2:]
    return normalized


def _match_segments(path_parts: Sequence[str], pattern_parts: Sequence[str]) -> bool:
    if not pattern_parts:
        return not path_parts
    head, rest = pattern_parts[0], pattern_parts[1:]
    if head == "**":
        # zero or more whole directories
        return any(
            _match_segments(path_parts[skip:], rest) for skip in range(len(path_parts) + 1)
        )
    if not path_parts:
        return False
    return fnmatch.fnmatchcase(path_parts[0], head) and _match_segments(path_parts[1:], rest)


def match_path_glob(path: str, pattern: str) -> bool:
    """
    Glob-match a manifest path against an ignore pattern.

    Matching is per path segment: ``*`` and ``?`` never cross a ``/``, and only
    a ``**`` segment spans directories, including zero of them, so
    ``packages/**/package.json`` also matches ``packages/package.json``.
    Leading ``./`` is ignored on both sides.
    """
    normalized_path = _normalize_path(path)
    normalized_pattern = _normalize_path(pattern)
    if not normalized_path or not normalized_pattern:
        return False
    return _match_segments(normalized_path.split("/"), normalized_pattern.split("/"))


def _config_value(config: Any, snake: str, camel: str, default: Any) -> Any:
    """Read a setting from a config object, its ``packages`` section or a mapping."""
    sources = [config]
    packages = (
        config.get("packages") if isinstance(config, Mapping) else getattr(config, "packages", None)
    )
    if packages is not None:
        sources.insert(0, packages)

    for source in sources:
        if isinstance(source, Mapping):
            for key in (snake, camel):
                if key in source and source[key] is not None:
                    return source[key]
        else:
            value = getattr(source, snake, None)
            if value is not None:
                return value
    return default


def evaluate_auto_close(
    facts: Sequence[RecoveredFact],
    file_paths: Sequence[str],
    config: Any,
) -> AutoCloseDecision:
    """
    Decide whether a pull request built from ``facts`` should be closed.

    Args:
        facts: Update triples recovered from the pull-request body
        file_paths: Manifest paths recovered from the same body
        config: Current configuration; a ``BuddyConfig``, a ``PackagesConfig``
            or a mapping with snake_case or camelCase keys

    Returns:
        AutoCloseDecision: ``respect_latest`` is checked before ``ignore_paths``.
        A missing configuration never closes anything.
    """
    if config is None:
        decision = AutoCloseDecision(False, None, "no configuration available")
        log_auto_close_decision(decision.should_close, decision.rule, decision.reason)
        return decision

    respect_latest = _config_value(config, "respect_latest", "respectLatest", True)
    if respect_latest:
        for fact in facts:
            if is_dynamic_version(fact.current_version):
                decision = AutoCloseDecision(
                    True,
                    RULE_RESPECT_LATEST,
                    f"{fact.name} is pinned from dynamic version '{fact.current_version}'",
                )
                log_auto_close_decision(
                    decision.should_close, decision.rule, decision.reason
                )
                return decision

    ignore_paths = _config_value(config, "ignore_paths", "ignorePaths", None) or []
    if isinstance(ignore_paths, str):
        ignore_paths = [ignore_paths]

    if ignore_paths:
        for file_path in file_paths:
            for pattern in ignore_paths:
                if isinstance(pattern, str) and match_path_glob(file_path, pattern):
                    decision = AutoCloseDecision(
                        True,
                        RULE_IGNORE_PATHS,
                        f"{file_path} matches ignored path '{pattern}'",
                    )
                    log_auto_close_decision(
                        decision.should_close, decision.rule, decision.reason
                    )
                    return decision

    decision = AutoCloseDecision(False, None, "pull request is still valid")
    log_auto_close_decision(decision.should_close, decision.rule, decision.reason)
    return decision


def should_auto_close(
    facts: Sequence[RecoveredFact], file_paths: Sequence[str], config: Any
) -> bool:
    """Boolean form of :func:`evaluate_auto_close`."""
    return evaluate_auto_close(facts, file_paths, config).should_close


def evaluate_pull_request_body(body: str, config: Any) -> AutoCloseDecision:
    """Decode a pull-request body and evaluate it in one step."""
    state = decode_state(body)
    return evaluate_auto_close(state.facts, state.file_paths, config)
