"""
Recover update facts from rendered pull-request bodies.

A pull request body is the only durable record of what a previous run
proposed. This module reads it back: first from the hidden structured
``buddy-state`` block written by the renderer, then from the markdown update
tables, which remain the source of truth for bodies written before the block
existed.

The table decoder recognises rows shaped like::

    | [lodash](https://...) | [`4.17.20` -> `4.17.21`](https://diff) | ... |
    | [vendor/pkg](https://...) | `^1.0 -> ^2.0` | require | ... |
    | pkg | `1.0.0` → `2.0.0` |

and ignores everything inside fenced code blocks.
"""

import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from .dependency import PackageUpdate, RecoveredFact
from .error_handling import log_decoding_error
from .structured_logging import log_decode_result

STATE_BLOCK_MARKER = "buddy-state"
STATE_BLOCK_VERSION = 1

_STATE_BLOCK_START = re.compile(r"<!--\s*" + STATE_BLOCK_MARKER + r"\b")
# the payload may not run into another comment
_STATE_BLOCK_PATTERN = re.compile(
    r"<!--\s*" + STATE_BLOCK_MARKER + r"\s+(\{(?:(?!<!--).)*?\})\s*-->", re.DOTALL
)
_FENCE_PATTERN = re.compile(r"^\s*(```|~~~)")

# `CUR` -> `NEW`, optionally wrapped in a diff link
_TWO_SPAN_CHANGE = re.compile(
    r"`\s*([^`|\s][^`|]*?)\s*`\s*(?:->|→)\s*`\s*([^`|\s][^`|]*?)\s*`"
)
# `CUR -> NEW` (Composer tables)
_SINGLE_SPAN_CHANGE = re.compile(
    r"`\s*([^`|\s][^`|]*?)\s*(?:->|→)\s*([^`|\s][^`|]*?)\s*`"
)

_LINK_TEXT = re.compile(r"\[([^\]]+)\]\([^)]*\)")
_PACKAGE_NAME = re.compile(r"^(@[\w.\-]+/)?[\w.\-]+(/[\w.\-]+)*$")

_BOLD_FILE_TABLE_ROW = re.compile(
    r"\|\s*\[[^\]]+\]\([^)]*\)\s*\|[^|]*\|\s*\*\*([^*]+)\*\*\s*\|"
)
_BOLD_FILE = re.compile(r"\*\*([^*\n]+\.(?:json|yaml|yml|lock))\*\*")
_SIMPLE_TABLE_ROW = re.compile(r"^\s*\|([^|\n]+)\|([^|\n]+)\|([^|\n]+)\|")
_FILE_EXTENSION = re.compile(r"\.(?:json|yaml|yml|lock)$")
_FILE_MENTION = re.compile(
    r"(?<!\S)([\w-]+(?:/[\w.-]+)*/[\w.-]+\.(?:json|yaml|yml|lock))(?=\s|$)",
    re.MULTILINE,
)

_REBASE_CHECKED = re.compile(
    r"- \[x\] <!-- rebase-check -->.*"
    r"(?:want to (?:rebase|update)/retry this PR|If you want to (?:rebase|update)/retry)",
    re.IGNORECASE,
)


@dataclass
class DecodedState:
    """Everything recoverable from one pull-request body."""

    facts: List[RecoveredFact] = field(default_factory=list)
    file_paths: List[str] = field(default_factory=list)
    used_state_block: bool = False


def _unfenced_lines(body: str) -> List[str]:
    """Body lines outside fenced code blocks; an unclosed fence runs to the end."""
    lines = []
    fence: Optional[str] = None
    for line in body.splitlines():
        match = _FENCE_PATTERN.match(line)
        if match:
            marker = match.group(1)
            if fence is None:
                fence = marker
            elif marker == fence:
                fence = None
            continue
        if fence is None:
            lines.append(line)
    return lines


def _clean_fact_version(version: str) -> str:
    return version.strip().strip("`").strip().lstrip("^~").strip()


def _clean_package_name(cell: str) -> Optional[str]:
    text = cell.strip()
    link = _LINK_TEXT.search(text)
    if link:
        text = link.group(1)
    name = text.replace("**", "").strip().strip("`").strip()
    if not name or not _PACKAGE_NAME.match(name):
        return None
    return name


def _find_change(line: str) -> Optional[re.Match]:
    return _TWO_SPAN_CHANGE.search(line) or _SINGLE_SPAN_CHANGE.search(line)


def _decode_row(line: str) -> Optional[RecoveredFact]:
    """Decode one table row, or None when it is not an update row."""
    if "|" not in line:
        return None

    change = _find_change(line)
    if change is None:
        return None

    cells = line[: change.start()].split("|")
    # cells[-1] is the lead-in of the change cell itself, e.g. "[" of a diff link
    if len(cells) < 2:
        return None
    name = _clean_package_name(cells[-2])
    if name is None:
        return None

    current = _clean_fact_version(change.group(1))
    new = _clean_fact_version(change.group(2))
    if not current or not new:
        return None
    return RecoveredFact(name=name, current_version=current, new_version=new)


def decode_tables(body: str) -> List[RecoveredFact]:
    """Decode update facts from markdown table rows only."""
    if not body or not isinstance(body, str):
        return []

    facts: List[RecoveredFact] = []
    for line in _unfenced_lines(body):
        fact = _decode_row(line)
        if fact is not None and fact not in facts:
            facts.append(fact)
    return facts


def _expand_compact_entries(files: Dict[str, Any]) -> List[Dict[str, Any]]:
    """``{file: [[name, current, new], ...]}`` back to full entries."""
    entries = []
    for file_path, rows in files.items():
        if not isinstance(rows, list):
            continue
        for row in rows:
            if isinstance(row, list) and len(row) == 3:
                name, current, new = row
                entries.append(
                    {"name": name, "currentVersion": current, "newVersion": new, "file": file_path}
                )
    return entries


def _read_state_block(body: str) -> Optional[List[Dict[str, Any]]]:
    """
    Entries of the structured state block.

    Returns None when there is no block or the block cannot be read; the
    latter is reported as a decoding warning.
    """
    text = "\n".join(_unfenced_lines(body))
    start = _STATE_BLOCK_START.search(text)
    if start is None:
        return None

    match = _STATE_BLOCK_PATTERN.match(text, start.start())
    if match is None:
        log_decoding_error(
            "Unterminated state block in pull request body",
            "state_codec",
            "_read_state_block",
        )
        return None

    try:
        payload = json.loads(match.group(1))
    except ValueError as e:
        log_decoding_error(
            "Malformed state block in pull request body",
            "state_codec",
            "_read_state_block",
            exception=e,
        )
        return None

    entries = None
    if isinstance(payload, dict):
        entries = payload.get("updates")
        if entries is None and isinstance(payload.get("files"), dict):
            entries = _expand_compact_entries(payload["files"])
    if not isinstance(entries, list):
        log_decoding_error(
            "State block has no update list",
            "state_codec",
            "_read_state_block",
        )
        return None
    return [entry for entry in entries if isinstance(entry, dict)]


def _entry_value(entry: Dict[str, Any], *keys: str) -> str:
    for key in keys:
        value = entry.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return ""


def _fact_from_entry(entry: Dict[str, Any]) -> Optional[RecoveredFact]:
    name = _entry_value(entry, "name")
    current = _clean_fact_version(_entry_value(entry, "currentVersion", "current_version"))
    new = _clean_fact_version(_entry_value(entry, "newVersion", "new_version"))
    if not name or not current or not new:
        return None
    return RecoveredFact(name=name, current_version=current, new_version=new)


def decode_state(body: str) -> DecodedState:
    """
    Recover facts and file paths from a pull-request body.

    The structured block is read first when present and valid; facts decoded
    from the tables are merged in after it, deduplicated by triple.
    """
    if not body or not isinstance(body, str):
        return DecodedState()

    state = DecodedState()
    entries = _read_state_block(body)
    if entries is not None:
        state.used_state_block = True
        for entry in entries:
            fact = _fact_from_entry(entry)
            if fact is not None and fact not in state.facts:
                state.facts.append(fact)

    for fact in decode_tables(body):
        if fact not in state.facts:
            state.facts.append(fact)

    state.file_paths = _extract_file_paths(body, entries or [])
    log_decode_result(len(state.facts), state.used_state_block)
    return state


def decode_pr_body(body: str) -> List[RecoveredFact]:
    """
    Recover the ``(name, current, new)`` triples a pull request proposes.

    Args:
        body: Rendered pull-request body, possibly edited by humans

    Returns:
        List[RecoveredFact]: Facts in order of appearance; empty when nothing
        recognisable is found. Never raises.
    """
    return decode_state(body).facts


def _add_path(paths: List[str], candidate: str) -> None:
    path = candidate.replace("**", "").strip().strip("`").strip()
    if path and path not in paths:
        paths.append(path)


def _extract_file_paths(body: str, entries: Sequence[Dict[str, Any]]) -> List[str]:
    paths: List[str] = []
    for entry in entries:
        file_path = _entry_value(entry, "file")
        if file_path:
            _add_path(paths, file_path)

    lines = _unfenced_lines(body)
    text = "\n".join(lines)

    for match in _BOLD_FILE_TABLE_ROW.finditer(text):
        _add_path(paths, match.group(1))

    for match in _BOLD_FILE.finditer(text):
        _add_path(paths, match.group(1))

    for line in lines:
        match = _SIMPLE_TABLE_ROW.match(line)
        if match is None:
            continue
        cell = match.group(3).replace("**", "").strip().strip("`")
        # badge and link cells
        if "](" in cell or "://" in cell:
            continue
        if "/" in cell or _FILE_EXTENSION.search(cell):
            _add_path(paths, cell)

    for match in _FILE_MENTION.finditer(text):
        _add_path(paths, match.group(1))

    return paths


def extract_file_paths(body: str) -> List[str]:
    """
    Manifest paths mentioned in a pull-request body.

    Collects files recorded in the state block, bold file cells, file-like
    third cells of simple tables, and plain-text path mentions.
    """
    if not body or not isinstance(body, str):
        return []
    return _extract_file_paths(body, _read_state_block(body) or [])


def extract_package_names(body: str) -> List[str]:
    """Distinct package names a pull-request body proposes to update."""
    names: List[str] = []
    for fact in decode_pr_body(body):
        if fact.name not in names:
            names.append(fact.name)
    return names


def _wrap_state_payload(payload: Dict[str, Any]) -> str:
    encoded = json.dumps(payload, separators=(",", ":"), ensure_ascii=False)
    encoded = encoded.replace("--", "-\\u002d").replace("<", "\\u003c")
    return f"<!-- {STATE_BLOCK_MARKER} {encoded} -->"


def _compact_payload(updates: Sequence[PackageUpdate]) -> Dict[str, Any]:
    files: Dict[str, List[List[str]]] = {}
    for update in updates:
        files.setdefault(update.file, []).append(
            [update.name, update.current_version, update.new_version]
        )
    return {"version": STATE_BLOCK_VERSION, "files": files}


def encode_state_block(
    updates: Sequence[PackageUpdate], max_length: Optional[int] = None
) -> str:
    """
    Render the hidden structured block for a set of updates.

    The block is an HTML comment, so it is invisible on the rendered page.
    ``--`` and ``<`` never appear literally inside it, which keeps the comment
    closed exactly where it should be.

    When ``max_length`` is given and the full block would exceed it, the
    block switches to a compact form that keeps only the triples grouped by
    manifest file. If even that is too long, trailing updates are left out
    so the block always stays well-formed.
    """
    block = _wrap_state_payload(
        {
            "version": STATE_BLOCK_VERSION,
            "updates": [
                {
                    "name": update.name,
                    "currentVersion": update.current_version,
                    "newVersion": update.new_version,
                    "updateType": update.update_type.value,
                    "dependencyType": update.dependency_type,
                    "file": update.file,
                }
                for update in updates
            ],
        }
    )
    if max_length is None or len(block) <= max_length:
        return block

    kept = list(updates)
    block = _wrap_state_payload(_compact_payload(kept))
    while kept and len(block) > max_length:
        # shrink proportionally, then by one
        ratio = max_length / len(block)
        kept = kept[: min(len(kept) - 1, int(len(kept) * ratio))]
        block = _wrap_state_payload(_compact_payload(kept))
    return block


def has_rebase_request(body: str) -> bool:
    """True when the rebase checkbox of a pull-request body has been ticked."""
    if not body or not isinstance(body, str):
        return False
    return _REBASE_CHECKED.search(body) is not None


def updates_match(body: str, updates: Sequence[PackageUpdate]) -> bool:
    """
    Whether an existing pull request already proposes exactly ``updates``.

    Every update must appear with the same target version, and the body may
    not propose any additional package.
    """
    if not body or not updates:
        return False

    existing: Dict[str, str] = {}
    for fact in decode_pr_body(body):
        existing[fact.name] = fact.new_version

    targets: Dict[str, str] = {}
    for update in updates:
        targets[update.name] = _clean_fact_version(update.new_version)

    for name, version in targets.items():
        if existing.get(name) != version:
            return False
    return len(existing) == len(targets)
