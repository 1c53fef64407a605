"""
Pull request rendering.

Produces the title, body, branch name, commit message and labels for an
update group. The body carries a hidden structured state block ahead of the
human-readable tables, so a later run can recover exactly what was proposed
even if the visible part is edited or truncated.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Sequence
from urllib.parse import quote

from .branching import generate_branch_name
from .cli_config import BuddyConfig
from .dependency import PackageUpdate, UpdateGroup, UpdateType
from .grouping import ManifestKind, classify_manifest, format_commit_message
from .state_codec import encode_state_block

MAX_BODY_LENGTH = 60000
# room left for the intro and the truncation footer
MAX_STATE_BLOCK_LENGTH = MAX_BODY_LENGTH - 1000

FOOTER = "This PR was generated by [dep-buddy](https://github.com/dep-buddy/dep-buddy) 🤖"
REBASE_CHECKBOX = (
    " - [ ] <!-- rebase-check -->If you want to rebase/retry this PR, check this box"
)
TRUNCATION_NOTE = (
    "**Note**: This PR body was truncated due to GitHub's character limit."
)

SECURITY_PACKAGES = ["helmet", "express-rate-limit", "cors", "bcrypt", "jsonwebtoken"]

_TYPE_EMOJI = {
    UpdateType.MAJOR: "🔴",
    UpdateType.MINOR: "🟡",
    UpdateType.PATCH: "🟢",
}

_INLINE_CODE = re.compile(r"(`+)(.+?)\1", re.DOTALL)
_MENTION = re.compile(r"(?<![\w.@/`])@([A-Za-z0-9][A-Za-z0-9-]*)(?![\w-]*/)")
_FENCE = re.compile(r"^\s*(```|~~~)")


def _sanitize_text_segment(text: str) -> str:
    """Neutralize mentions in a segment that contains no code."""
    pieces = []
    last = 0
    for code in _INLINE_CODE.finditer(text):
        pieces.append(_MENTION.sub("@&#8203;\\1", text[last : code.start()]))
        pieces.append(code.group(0))
        last = code.end()
    pieces.append(_MENTION.sub("@&#8203;\\1", text[last:]))
    return "".join(pieces)


def sanitize_mentions(text: str) -> str:
    """
    Stop ``@handle`` mentions in release notes from notifying people.

    Fenced blocks, inline code, email addresses and scoped package names
    such as ``@types/node`` are left untouched.
    """
    if not text:
        return ""

    output = []
    buffer: List[str] = []
    fence: Optional[str] = None
    for line in text.split("\n"):
        match = _FENCE.match(line)
        if fence is None:
            if match:
                if buffer:
                    output.append(_sanitize_text_segment("\n".join(buffer)))
                    buffer = []
                fence = match.group(1)
                output.append(line)
            else:
                buffer.append(line)
        else:
            output.append(line)
            if match and match.group(1) == fence:
                fence = None
    if buffer:
        output.append(_sanitize_text_segment("\n".join(buffer)))
    return "\n".join(output)


def generate_labels(
    group: UpdateGroup, configured_labels: Optional[Sequence[str]] = None
) -> List[str]:
    """Labels for a pull request: update types, bulk and security markers, config."""
    labels = ["dependencies"]
    for update_type in (UpdateType.MAJOR, UpdateType.MINOR, UpdateType.PATCH):
        if any(u.update_type is update_type for u in group.updates):
            labels.append(update_type.value)
    if len(group.updates) > 5:
        labels.append("bulk-update")
    if any(pkg in u.name for u in group.updates for pkg in SECURITY_PACKAGES):
        labels.append("security")
    for label in configured_labels or []:
        if label not in labels:
            labels.append(label)
    return labels


@dataclass
class RenderedPullRequest:
    """Everything needed to open or refresh one pull request."""

    title: str
    body: str
    branch_name: str
    commit_message: str
    labels: List[str] = field(default_factory=list)
    group: Optional[UpdateGroup] = None


class PullRequestRenderer:
    """Renders update groups into pull-request text."""

    def __init__(self, config: Optional[BuddyConfig] = None):
        self.config = config or BuddyConfig()

    def render_title(self, group: UpdateGroup) -> str:
        return group.title

    def _partition(self, updates: Sequence[PackageUpdate]) -> Dict[ManifestKind, List[PackageUpdate]]:
        partition: Dict[ManifestKind, List[PackageUpdate]] = {kind: [] for kind in ManifestKind}
        for update in updates:
            partition[classify_manifest(update.file)].append(update)
        return partition

    def _summary(self, partition: Dict[ManifestKind, List[PackageUpdate]], total: int) -> List[str]:
        rows = [
            ("📦 NPM Packages", partition[ManifestKind.PACKAGE_JSON]),
            ("🔧 System Dependencies", partition[ManifestKind.OTHER]),
            ("🚀 GitHub Actions", partition[ManifestKind.CI_WORKFLOW]),
            ("🎼 Composer Packages", partition[ManifestKind.COMPOSER]),
        ]
        lines = ["## Package Updates Summary", "", "| Type | Count |", "|------|-------|"]
        for label, updates in rows:
            if updates:
                lines.append(f"| {label} | {len(updates)} |")
        lines.append(f"| **Total** | **{total}** |")
        lines.append("")
        return lines

    @staticmethod
    def _count_line(updates: Sequence[PackageUpdate], noun: str) -> str:
        plural = noun if len(updates) == 1 else f"{noun}s"
        return f"*{len(updates)} {plural} will be updated*"

    def _npm_table(self, updates: Sequence[PackageUpdate]) -> List[str]:
        lines = [
            "## 📦 npm Dependencies",
            "",
            self._count_line(updates, "package"),
            "",
            "| Package | Change | File | Type |",
            "|---|---|---|---|",
        ]
        for update in updates:
            url = update.homepage or f"https://www.npmjs.com/package/{quote(update.name, safe='@/')}"
            diff_url = (
                f"https://renovatebot.com/diffs/npm/{quote(update.name, safe='')}"
                f"/{update.current_version}/{update.new_version}"
            )
            lines.append(
                f"| [{update.name}]({url}) "
                f"| [`{update.current_version}` -> `{update.new_version}`]({diff_url}) "
                f"| **{update.file}** | {update.dependency_type} |"
            )
        lines.append("")
        return lines

    def _composer_table(self, updates: Sequence[PackageUpdate]) -> List[str]:
        lines = [
            "## 🐘 PHP/Composer Dependencies",
            "",
            self._count_line(updates, "package"),
            "",
            "| Package | Change | File | Type | Update |",
            "|---|---|---|---|---|",
        ]
        for update in updates:
            url = update.homepage or f"https://packagist.org/packages/{update.name}"
            diff_url = (
                f"https://renovatebot.com/diffs/packagist/{quote(update.name, safe='')}"
                f"/{update.current_version}/{update.new_version}"
            )
            lines.append(
                f"| [{update.name}]({url}) "
                f"| [`{update.current_version} -> {update.new_version}`]({diff_url}) "
                f"| **{update.file}** | {update.dependency_type} | {update.update_type.value} |"
            )
        lines.append("")
        return lines

    def _system_table(self, updates: Sequence[PackageUpdate]) -> List[str]:
        lines = [
            "## 🔧 System Dependencies",
            "",
            self._count_line(updates, "package"),
            "",
            "| Package | Change | Type | File |",
            "|---|---|---|---|",
        ]
        for update in updates:
            url = f"https://pkgx.com/pkg/{quote(update.name, safe='')}"
            emoji = _TYPE_EMOJI[update.update_type]
            lines.append(
                f"| [{update.name}]({url}) "
                f"| `{update.current_version}` → `{update.new_version}` "
                f"| {emoji} {update.update_type.value} | **{update.file}** |"
            )
        lines.append("")
        return lines

    def _actions_table(self, updates: Sequence[PackageUpdate]) -> List[str]:
        lines = [
            "## 🚀 GitHub Actions",
            "",
            self._count_line(updates, "action"),
            "",
            "| Action | Change | Type | File |",
            "|---|---|---|---|",
        ]
        for update in updates:
            emoji = _TYPE_EMOJI[update.update_type]
            lines.append(
                f"| [{update.name}](https://github.com/{update.name}) "
                f"| `{update.current_version}` → `{update.new_version}` "
                f"| {emoji} {update.update_type.value} | **{update.file}** |"
            )
        lines.append("")
        return lines

    def _release_notes(self, updates: Sequence[PackageUpdate]) -> List[str]:
        lines = ["### Release Notes", ""]
        for update in updates:
            lines.append("<details>")
            lines.append(f"<summary>{update.name}</summary>")
            lines.append("")
            lines.append(f"**{update.current_version} -> {update.new_version}**")
            lines.append("")

            notes = (update.metadata or {}).get("release_notes")
            if notes:
                lines.append(sanitize_mentions(str(notes)))
                lines.append("")
            if update.release_notes_url:
                lines.append(f"[Release Notes]({update.release_notes_url})")
                lines.append("")
            if update.changelog_url:
                lines.append(f"[Changelog]({update.changelog_url})")
                lines.append("")

            kind = classify_manifest(update.file)
            if kind is ManifestKind.COMPOSER:
                lines.append(
                    f"Visit [{update.name}](https://packagist.org/packages/{update.name}) "
                    "on Packagist for more information."
                )
            elif kind is ManifestKind.CI_WORKFLOW:
                lines.append(
                    f"Visit [{update.name}](https://github.com/{update.name}/releases) "
                    "for release notes."
                )
            elif update.homepage:
                lines.append(f"🔗 [Homepage]({update.homepage})")
            lines.append("")
            lines.append("</details>")
            lines.append("")
        return lines

    def _configuration(self, group: UpdateGroup) -> List[str]:
        if len(group.updates) == 1:
            if group.update_type is UpdateType.MAJOR:
                ignore_text = "this major version"
            else:
                ignore_text = "this update"
        else:
            ignore_text = "these updates"
        return [
            "### Configuration",
            "",
            "📅 **Schedule**: Branch creation - At any time (no schedule defined), "
            "Automerge - At any time (no schedule defined).",
            "",
            "🚦 **Automerge**: Disabled by config. Please merge this manually once "
            "you are satisfied.",
            "",
            "♻ **Rebasing**: Whenever PR is behind base branch, or you tick the "
            "rebase/retry checkbox.",
            "",
            f"🔕 **Ignore**: Close this PR and you won't be reminded about {ignore_text}.",
            "",
        ]

    def render_body(self, group: UpdateGroup) -> str:
        """
        Render the markdown body for a group.

        The state block goes first and is never cut: truncation to
        ``MAX_BODY_LENGTH`` only shortens the tables and release notes after it.
        """
        partition = self._partition(group.updates)

        head = "\n".join(
            [
                "This PR contains the following updates:",
                "",
                encode_state_block(group.updates, max_length=MAX_STATE_BLOCK_LENGTH),
                "",
            ]
        )
        lines = self._summary(partition, len(group.updates))

        if partition[ManifestKind.PACKAGE_JSON]:
            lines.extend(self._npm_table(partition[ManifestKind.PACKAGE_JSON]))
        if partition[ManifestKind.COMPOSER]:
            lines.extend(self._composer_table(partition[ManifestKind.COMPOSER]))
        if partition[ManifestKind.OTHER]:
            lines.extend(self._system_table(partition[ManifestKind.OTHER]))
        if partition[ManifestKind.CI_WORKFLOW]:
            lines.extend(self._actions_table(partition[ManifestKind.CI_WORKFLOW]))

        lines.extend(["---", ""])
        lines.extend(self._release_notes(group.updates))
        lines.extend(["---", ""])
        lines.extend(self._configuration(group))
        lines.extend(["---", "", REBASE_CHECKBOX, "", "---", "", FOOTER])

        rest = "\n".join(lines)
        if len(head) + 1 + len(rest) > MAX_BODY_LENGTH:
            return self._truncate(head, rest)
        return f"{head}\n{rest}"

    def _truncate(self, head: str, rest: str) -> str:
        tail = "\n\n".join(["", "---", TRUNCATION_NOTE, REBASE_CHECKBOX, FOOTER])
        budget = max(0, MAX_BODY_LENGTH - len(head) - 1 - len(tail))
        truncated = rest[:budget]
        last_details_end = truncated.rfind("</details>")
        if last_details_end > 0:
            truncated = truncated[: last_details_end + len("</details>")]
        elif "\n" in truncated:
            # no half table rows
            truncated = truncated[: truncated.rfind("\n")]
        return f"{head}\n{truncated}{tail}"

    def render_commit_message(self, group: UpdateGroup) -> str:
        return format_commit_message(group.updates)

    def render(self, group: UpdateGroup, now: Optional[datetime] = None) -> RenderedPullRequest:
        """Render one group and store its body on the group."""
        group.body = self.render_body(group)
        return RenderedPullRequest(
            title=self.render_title(group),
            body=group.body,
            branch_name=generate_branch_name(
                group.updates, self.config.pull_request.branch_prefix, now=now
            ),
            commit_message=self.render_commit_message(group),
            labels=generate_labels(group, self.config.pull_request.labels),
            group=group,
        )

    def render_groups(
        self, groups: Sequence[UpdateGroup], now: Optional[datetime] = None
    ) -> List[RenderedPullRequest]:
        return [self.render(group, now=now) for group in groups]
