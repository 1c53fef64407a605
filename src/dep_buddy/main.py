import asyncio
import copy
from pathlib import Path
from typing import Optional, Tuple

import click
from rich.console import Console
from rich.panel import Panel

from . import __version__
from .auto_close import evaluate_auto_close
from .classifier import classify
from .cli_config import (
    BuddyConfig,
    config_from_dict,
    create_sample_config,
    get_config,
    load_config,
    load_config_file,
    validate_config_values,
)
from .error_handling import setup_error_handling
from .renderer import PullRequestRenderer
from .reporting import UpdateReporter, scan_result_to_dict, to_json
from .scanner import get_update_scanner
from .state_codec import decode_state
from .structured_logging import configure_logging

console = Console()


def _load_cli_config(config_file: Optional[str]) -> BuddyConfig:
    """Configuration for one command, from an explicit file or the defaults."""
    if config_file:
        config = load_config(Path(config_file))
    else:
        config = copy.deepcopy(get_config())
    configure_logging(config.logging.log_level)
    setup_error_handling()
    return config


config_file_option = click.option(
    "--config-file",
    type=click.Path(exists=True, dir_okay=False),
    help="Configuration file to use instead of the discovered one",
)

output_format_option = click.option(
    "--output-format",
    type=click.Choice(["console", "json"]),
    default="console",
    help="Output format",
    show_default=True,
)


@click.group(invoke_without_command=True)
@click.option("--version", is_flag=True, help="Show version information")
@click.pass_context
def cli(ctx, version):
    """
    🤖 dep-buddy: dependency update pull-request bot

    Finds outdated dependencies, groups them into pull requests, and reads
    previously rendered pull requests back to decide whether they are stale.
    """
    if version:
        console.print(f"dep-buddy version {__version__}", style="bold blue")
        ctx.exit()

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())


@cli.command()
@click.argument(
    "project_path",
    type=click.Path(exists=True, file_okay=False),
    default=".",
)
@output_format_option
@click.option("--show-body", is_flag=True, help="Print each rendered pull request body")
@click.option(
    "--strategy",
    type=click.Choice(["all", "major", "minor", "patch"]),
    help="Override the configured update strategy",
)
@config_file_option
def scan(
    project_path: str,
    output_format: str,
    show_body: bool,
    strategy: Optional[str],
    config_file: Optional[str],
):
    """
    Scan a project for outdated dependencies.

    PROJECT_PATH: Root of the project to scan (defaults to the current directory)
    """
    config = _load_cli_config(config_file)
    if strategy:
        config.packages.strategy = strategy

    scanner = get_update_scanner(config)
    if output_format == "console":
        with console.status("[bold blue]Checking registries...", spinner="dots"):
            result = asyncio.run(scanner.scan(project_path))
    else:
        result = asyncio.run(scanner.scan(project_path))

    rendered = PullRequestRenderer(config).render_groups(result.groups)

    if output_format == "json":
        click.echo(to_json(scan_result_to_dict(result, rendered)))
    else:
        UpdateReporter(console).print_scan_results(
            result, project_path, rendered, show_body=show_body
        )


@cli.command("classify")
@click.argument("current_version")
@click.argument("new_version")
def classify_command(current_version: str, new_version: str):
    """Classify a version change as major, minor or patch."""
    click.echo(classify(current_version, new_version).value)


@cli.command()
@click.argument("body_file", type=click.File("r", encoding="utf-8"))
@output_format_option
def decode(body_file, output_format: str):
    """
    Recover the updates proposed by a rendered pull request body.

    BODY_FILE: File containing the body, or - for stdin
    """
    state = decode_state(body_file.read())

    if output_format == "json":
        click.echo(
            to_json(
                {
                    "facts": [fact.to_dict() for fact in state.facts],
                    "filePaths": state.file_paths,
                    "usedStateBlock": state.used_state_block,
                }
            )
        )
    else:
        UpdateReporter(console).print_decoded_facts(
            state.facts, state.file_paths, state.used_state_block
        )


@cli.command("check-close")
@click.argument("body_file", type=click.File("r", encoding="utf-8"))
@click.option(
    "--respect-latest/--no-respect-latest",
    default=None,
    help="Override packages.respect_latest",
)
@click.option(
    "--ignore-path",
    "ignore_paths",
    multiple=True,
    help="Glob of manifest paths that are no longer managed (repeatable)",
)
@click.option(
    "--exit-code",
    is_flag=True,
    help="Exit with status 1 when the pull request should be closed",
)
@output_format_option
@config_file_option
def check_close(
    body_file,
    respect_latest: Optional[bool],
    ignore_paths: Tuple[str, ...],
    exit_code: bool,
    output_format: str,
    config_file: Optional[str],
):
    """
    Decide whether a previously opened pull request should be auto-closed.

    BODY_FILE: File containing the body, or - for stdin
    """
    config = _load_cli_config(config_file)
    if respect_latest is not None:
        config.packages.respect_latest = respect_latest
    if ignore_paths:
        config.packages.ignore_paths = list(ignore_paths)

    state = decode_state(body_file.read())
    decision = evaluate_auto_close(state.facts, state.file_paths, config)

    if output_format == "json":
        click.echo(
            to_json(
                {
                    "shouldClose": decision.should_close,
                    "rule": decision.rule,
                    "reason": decision.reason,
                }
            )
        )
    else:
        UpdateReporter(console).print_auto_close_decision(decision)

    if exit_code and decision.should_close:
        raise SystemExit(1)


@cli.command()
def info():
    """Show information about supported files, settings and usage examples."""
    info_text = """
[bold blue]📋 Supported Manifests:[/bold blue]

• [green]package.json[/green] - npm dependencies (npm registry)
• [green]composer.json[/green] - PHP dependencies (Packagist)
• [green].github/workflows/*.yml[/green] - GitHub Actions (GitHub releases)
• [green]deps.yaml / dependencies.yaml / pkgx.yaml[/green] - system dependencies (reported only)

[bold blue]🔀 Grouping:[/bold blue]

• [red]major[/red] - one pull request per package
• [yellow]minor[/yellow] / [green]patch[/green] - combined into a single "Non-Major Updates" pull request

[bold blue]🔒 Auto-Close Rules:[/bold blue]

• [yellow]respect_latest[/yellow] - closes pull requests that pin a dynamic version (latest, *, main, ...)
• [yellow]ignore_paths[/yellow] - closes pull requests touching manifests that are now ignored

[bold blue]🌍 Environment Variables:[/bold blue]

• [cyan]BUDDY_RESPECT_LATEST[/cyan] - Respect dynamic versions (true/false)
• [cyan]BUDDY_IGNORE_PATHS[/cyan] - Comma separated manifest globs to ignore
• [cyan]BUDDY_STRATEGY[/cyan] - all, major, minor or patch
• [cyan]BUDDY_BRANCH_PREFIX[/cyan] - Branch namespace (default: buddy)
• [cyan]BUDDY_RATE_LIMIT[/cyan] / [cyan]BUDDY_MAX_CONCURRENT[/cyan] / [cyan]BUDDY_TIMEOUT[/cyan] - Registry limits
• [cyan]GITHUB_TOKEN[/cyan] - Token for GitHub release lookups

[bold blue]📄 Configuration Files:[/bold blue]

• [green].buddy-bot.json|.yaml|.yml|.toml[/green] - Project-level config
• [green]~/.config/buddy-bot/config.json[/green] - User-level config

[bold blue]💡 Usage Examples:[/bold blue]

  # Scan the current project
  dep-buddy scan .

  # Print rendered pull requests as JSON
  dep-buddy scan . --output-format json

  # Read an existing pull request body back
  dep-buddy decode body.md

  # Should this pull request be closed now that packages/legacy is ignored?
  dep-buddy check-close body.md --ignore-path "packages/legacy/**"
"""
    console.print(
        Panel(
            info_text,
            title="[bold]dep-buddy Information[/bold]",
            border_style="blue",
        )
    )


@cli.group()
def config():
    """Configuration management commands."""
    pass


@config.command("init")
@click.option(
    "--path",
    type=click.Path(),
    default=".buddy-bot.json",
    help="Path where to create the config file",
    show_default=True,
)
@click.option("--force", is_flag=True, help="Overwrite existing config file")
def config_init(path: str, force: bool):
    """Create a sample configuration file."""
    config_path = Path(path)

    if config_path.exists() and not force:
        console.print(f"⚠️  Config file already exists at {config_path}", style="yellow")
        console.print("Use --force to overwrite", style="dim")
        return

    try:
        with open(config_path, "w", encoding="utf-8") as f:
            f.write(create_sample_config())
    except OSError as e:
        raise click.ClickException(f"Failed to create config file: {e}")

    console.print(f"✅ Created configuration file at {config_path}", style="green")
    console.print("Edit this file to customize your settings", style="dim")


@config.command("show")
@config_file_option
def config_show(config_file: Optional[str]):
    """Show current configuration settings."""
    current_config = load_config(Path(config_file)) if config_file else get_config()

    console.print(Panel("[bold blue]🔧 Configuration[/bold blue]", border_style="blue"))

    packages = current_config.packages
    console.print("\n[bold cyan]📦 Packages:[/bold cyan]")
    console.print(f"  Strategy: {packages.strategy}")
    console.print(f"  Respect Latest: {packages.respect_latest}")
    console.print(f"  Ignored Packages: {', '.join(packages.ignore) or '-'}")
    console.print(f"  Ignored Paths: {', '.join(packages.ignore_paths) or '-'}")
    for group in packages.groups:
        console.print(f"  Group {group.name}: {', '.join(group.patterns)}")

    pull_request = current_config.pull_request
    console.print("\n[bold cyan]🔀 Pull Requests:[/bold cyan]")
    console.print(f"  Branch Prefix: {pull_request.branch_prefix}")
    console.print(f"  Labels: {', '.join(pull_request.labels) or '-'}")

    console.print("\n[bold cyan]🌐 Network Settings:[/bold cyan]")
    for registry, url in current_config.network.registry_urls.items():
        console.print(f"  {registry}: {url}")
    console.print(f"  Timeout: {current_config.network.timeout_seconds}s")
    console.print(f"  Rate Limit: {current_config.network.rate_limit} req/s")
    console.print(f"  Max Concurrent: {current_config.network.max_concurrent}")

    console.print("\n[bold cyan]📝 Logging Settings:[/bold cyan]")
    console.print(f"  Log Level: {current_config.logging.log_level}")


@config.command("validate")
@click.argument("config_file", type=click.Path(exists=True, dir_okay=False))
def config_validate(config_file: str):
    """Validate a configuration file."""
    config_data = load_config_file(Path(config_file))

    if config_data is None:
        raise click.ClickException(f"Could not load config from {config_file}")

    errors = validate_config_values(config_from_dict(config_data))
    if errors:
        console.print("❌ Configuration validation failed:", style="red")
        for error in errors:
            console.print(f"  • {error}", style="red")
        raise SystemExit(1)

    console.print(f"✅ Configuration file {config_file} is valid", style="green")


if __name__ == "__main__":
    cli()
