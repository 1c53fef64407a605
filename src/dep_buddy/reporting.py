"""
Reporting and output formatting for update scans.

Provides color-coded console output using the Rich library, plus JSON
serialization of the same results for machine consumption.
"""

import json
from typing import Any, Dict, List, Optional, Sequence

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from .auto_close import AutoCloseDecision
from .dependency import PackageUpdate, RecoveredFact, UpdateGroup, UpdateType
from .renderer import RenderedPullRequest
from .scanner import ScanResult

_TYPE_STYLE = {
    UpdateType.MAJOR: "bold red",
    UpdateType.MINOR: "yellow",
    UpdateType.PATCH: "green",
}


def update_to_dict(update: PackageUpdate) -> Dict[str, Any]:
    return {
        "name": update.name,
        "currentVersion": update.current_version,
        "newVersion": update.new_version,
        "updateType": update.update_type.value,
        "dependencyType": update.dependency_type,
        "file": update.file,
    }


def scan_result_to_dict(
    scan_result: ScanResult,
    rendered: Optional[Sequence[RenderedPullRequest]] = None,
) -> Dict[str, Any]:
    """JSON-ready view of a scan, with rendered pull requests when available."""
    branches = {}
    for pull_request in rendered or []:
        if pull_request.group is not None:
            branches[pull_request.group.name] = pull_request

    groups = []
    for group in scan_result.groups:
        entry: Dict[str, Any] = {
            "name": group.name,
            "updateType": group.update_type.value,
            "title": group.title,
            "updates": [update_to_dict(u) for u in group.updates],
        }
        pull_request = branches.get(group.name)
        if pull_request is not None:
            entry["branchName"] = pull_request.branch_name
            entry["commitMessage"] = pull_request.commit_message
            entry["labels"] = pull_request.labels
            entry["body"] = pull_request.body
        groups.append(entry)

    return {
        "totalPackages": scan_result.total_packages,
        "updates": [update_to_dict(u) for u in scan_result.updates],
        "groups": groups,
        "durationMs": scan_result.duration_ms,
        "errors": list(scan_result.errors),
    }


class UpdateReporter:
    """Formats and displays update scan results."""

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()

    def print_scan_results(
        self,
        scan_result: ScanResult,
        project_path: str,
        rendered: Optional[Sequence[RenderedPullRequest]] = None,
        show_body: bool = False,
    ) -> None:
        """
        Print scan results in a user-friendly format.

        Args:
            scan_result: The scan results to display
            project_path: Path to the scanned project
            rendered: Rendered pull requests for the scan's groups
            show_body: Whether to print each rendered body in full
        """
        self.console.print()
        self.console.print(
            Panel(
                f"🔍 Dependency Updates: {project_path}",
                title="[bold blue]dep-buddy[/bold blue]",
                border_style="blue",
            )
        )

        if scan_result.errors:
            self._print_errors(scan_result.errors)

        if scan_result.updates:
            self._print_updates(scan_result.updates)
            self._print_groups(scan_result.groups, rendered or [], show_body)
        else:
            self.console.print("✅ All dependencies are up to date.", style="green")

        duration_seconds = scan_result.duration_ms / 1000
        self.console.print(
            f"\n[dim]Checked {scan_result.total_packages} packages "
            f"in {duration_seconds:.2f} seconds[/dim]"
        )

    def _print_updates(self, updates: List[PackageUpdate]) -> None:
        table = Table(title="📦 Available Updates", box=box.ROUNDED, title_style="bold cyan")
        table.add_column("Package", style="bold")
        table.add_column("Current")
        table.add_column("New")
        table.add_column("Type", justify="center")
        table.add_column("File", style="dim")

        for update in updates:
            style = _TYPE_STYLE[update.update_type]
            table.add_row(
                update.name,
                update.current_version,
                update.new_version,
                f"[{style}]{update.update_type.value}[/{style}]",
                update.file,
            )

        self.console.print(table)
        self.console.print()

    def _print_groups(
        self,
        groups: List[UpdateGroup],
        rendered: Sequence[RenderedPullRequest],
        show_body: bool,
    ) -> None:
        by_name = {pr.group.name: pr for pr in rendered if pr.group is not None}

        table = Table(title="🔀 Pull Requests", box=box.ROUNDED, title_style="bold cyan")
        table.add_column("Group", style="bold")
        table.add_column("Title")
        table.add_column("Branch", style="dim")
        table.add_column("Updates", justify="center")

        for group in groups:
            pull_request = by_name.get(group.name)
            table.add_row(
                group.name,
                group.title,
                pull_request.branch_name if pull_request else "",
                str(len(group.updates)),
            )
        self.console.print(table)

        if show_body:
            for pull_request in rendered:
                self.console.print()
                self.console.print(
                    Panel(
                        Text(pull_request.body),
                        title=f"[bold]{pull_request.title}[/bold]",
                        border_style="cyan",
                    )
                )

    def print_decoded_facts(
        self, facts: List[RecoveredFact], file_paths: List[str], used_state_block: bool
    ) -> None:
        """Print the updates recovered from a pull-request body."""
        if not facts:
            self.console.print("No update facts found in the pull request body.", style="yellow")
        else:
            source = "state block + tables" if used_state_block else "tables"
            table = Table(
                title=f"📋 Recovered Updates ({source})",
                box=box.ROUNDED,
                title_style="bold cyan",
            )
            table.add_column("Package", style="bold")
            table.add_column("Current")
            table.add_column("New")
            for fact in facts:
                table.add_row(fact.name, fact.current_version, fact.new_version)
            self.console.print(table)

        if file_paths:
            self.console.print("\n[bold]Files:[/bold]")
            for path in file_paths:
                self.console.print(f"  • {path}")

    def print_auto_close_decision(self, decision: AutoCloseDecision) -> None:
        if decision.should_close:
            self.console.print(
                f"[bold red]🔒 Close this pull request[/bold red] ({decision.rule}): {decision.reason}"
            )
        else:
            self.console.print(
                f"[bold green]✅ Keep this pull request open[/bold green]: {decision.reason}"
            )

    def _print_errors(self, errors: List[str]) -> None:
        """Print scan errors."""
        error_text = "\n".join(f"• {error}" for error in errors)
        self.console.print(
            Panel(
                error_text,
                title="[bold red]⚠️  Scan Errors[/bold red]",
                border_style="red",
            )
        )
        self.console.print()


def to_json(data: Any) -> str:
    return json.dumps(data, indent=2, ensure_ascii=False)
