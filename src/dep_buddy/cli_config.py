"""
Configuration management for dep-buddy.

Settings come from dataclass defaults, then the first configuration file
found (JSON, YAML or TOML), then ``BUDDY_*`` environment variables. Keys in
files may be written in snake_case or camelCase.
"""

import json
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import toml
import yaml
from rich.console import Console

console = Console(stderr=True)

CONFIG_FILE_NAMES = [
    ".buddy-bot.json",
    ".buddy-bot.yaml",
    ".buddy-bot.yml",
    ".buddy-bot.toml",
]

VALID_STRATEGIES = ["all", "major", "minor", "patch"]
VALID_LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


@dataclass
class GroupConfig:
    """A named update group selected by package-name glob patterns."""

    name: str
    patterns: List[str] = field(default_factory=list)
    strategy: Optional[str] = None


@dataclass
class PackagesConfig:
    """Which updates are proposed and which manifests are managed."""

    strategy: str = "all"
    ignore: List[str] = field(default_factory=list)
    ignore_paths: List[str] = field(default_factory=list)
    respect_latest: bool = True
    groups: List[GroupConfig] = field(default_factory=list)


@dataclass
class PullRequestConfig:
    """Pull request presentation settings."""

    branch_prefix: str = "buddy"
    labels: List[str] = field(default_factory=lambda: ["dependencies"])
    reviewers: List[str] = field(default_factory=list)
    assignees: List[str] = field(default_factory=list)


@dataclass
class RepositoryConfig:
    provider: str = "github"
    owner: str = ""
    name: str = ""
    base_branch: str = "main"


@dataclass
class NetworkConfig:
    """Network and registry configuration."""

    user_agent: str = "dep-buddy/1.0.0 (Dependency Update Bot)"
    registry_urls: Dict[str, str] = field(
        default_factory=lambda: {
            "npm": "https://registry.npmjs.org",
            "packagist": "https://repo.packagist.org",
            "github": "https://api.github.com",
        }
    )
    timeout_seconds: float = 30.0
    rate_limit: float = 10.0
    max_concurrent: int = 10


@dataclass
class LoggingConfig:
    """Logging and error handling configuration."""

    log_level: str = "WARNING"
    enable_json: bool = True


@dataclass
class BuddyConfig:
    """Main configuration containing all subsections."""

    repository: RepositoryConfig = field(default_factory=RepositoryConfig)
    packages: PackagesConfig = field(default_factory=PackagesConfig)
    pull_request: PullRequestConfig = field(default_factory=PullRequestConfig)
    network: NetworkConfig = field(default_factory=NetworkConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @property
    def respect_latest(self) -> bool:
        return self.packages.respect_latest

    @property
    def ignore_paths(self) -> List[str]:
        return self.packages.ignore_paths


# Global configuration instance
_global_config: Optional[BuddyConfig] = None

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


def to_snake_case(key: str) -> str:
    """``respectLatest`` -> ``respect_latest``; snake_case passes through."""
    return _CAMEL_BOUNDARY.sub("_", key).lower()


def validate_config_values(config: BuddyConfig) -> List[str]:
    """
    Validate configuration values and return any errors.

    Args:
        config: Configuration to validate

    Returns:
        List[str]: List of validation errors (empty if valid)
    """
    errors = []

    if config.packages.strategy not in VALID_STRATEGIES:
        errors.append(
            f"packages.strategy must be one of {', '.join(VALID_STRATEGIES)}"
        )
    for group in config.packages.groups:
        if not group.name:
            errors.append("packages.groups entries need a name")
        if not group.patterns:
            errors.append(f"packages.groups.{group.name or '?'} needs at least one pattern")
        if group.strategy is not None and group.strategy not in VALID_STRATEGIES:
            errors.append(f"packages.groups.{group.name} has an invalid strategy")

    prefix = config.pull_request.branch_prefix
    if not prefix or re.search(r"\s|\.\.|[~^:?*\[\\]", prefix):
        errors.append("pull_request.branch_prefix must be a valid git ref component")

    if config.network.rate_limit <= 0:
        errors.append("network.rate_limit must be positive")
    if config.network.max_concurrent <= 0:
        errors.append("network.max_concurrent must be positive")
    if config.network.timeout_seconds <= 0:
        errors.append("network.timeout_seconds must be positive")

    if config.logging.log_level.upper() not in VALID_LOG_LEVELS:
        errors.append(f"logging.log_level must be one of {', '.join(VALID_LOG_LEVELS)}")

    return errors


def load_config_file(config_path: Path) -> Optional[Dict[str, Any]]:
    """Load config from file."""
    if not config_path.exists():
        return None

    try:
        with open(config_path, encoding="utf-8") as f:
            suffix = config_path.suffix.lower()
            if suffix in [".yaml", ".yml"]:
                data = yaml.safe_load(f)
            elif suffix == ".toml":
                data = toml.load(f)
            elif suffix == ".json":
                data = json.load(f)
            else:
                return None
    except (OSError, ValueError, yaml.YAMLError, toml.TomlDecodeError) as e:
        console.print(
            f"⚠️  Error loading config from {config_path}: {e}", style="yellow"
        )
        return None

    if not isinstance(data, dict):
        console.print(
            f"⚠️  Config file {config_path} does not contain a mapping", style="yellow"
        )
        return None
    return data


def find_config_file(start_dir: Optional[Path] = None) -> Optional[Path]:
    """Find config file in standard locations."""
    base = start_dir or Path.cwd()
    locations = [base / name for name in CONFIG_FILE_NAMES]
    locations.extend(
        [
            Path.home() / ".config" / "buddy-bot" / "config.json",
            Path.home() / ".config" / "buddy-bot" / "config.yaml",
            Path.home() / ".config" / "buddy-bot" / "config.toml",
        ]
    )

    for location in locations:
        if location.exists():
            return location

    return None


def load_environment_overrides(config: BuddyConfig) -> None:
    """Load environment variable overrides."""

    def get_env_bool(key: str, default: bool) -> bool:
        value = os.environ.get(key, "").lower()
        return value in ["true", "1", "yes", "on"] if value else default

    def get_env_int(key: str) -> Optional[int]:
        try:
            return int(os.environ[key]) if key in os.environ else None
        except ValueError:
            console.print(f"⚠️  Invalid integer value for {key}, using default", style="yellow")
            return None

    def get_env_float(key: str) -> Optional[float]:
        try:
            return float(os.environ[key]) if key in os.environ else None
        except ValueError:
            console.print(f"⚠️  Invalid float value for {key}, using default", style="yellow")
            return None

    config.packages.respect_latest = get_env_bool(
        "BUDDY_RESPECT_LATEST", config.packages.respect_latest
    )
    if ignore_paths := os.environ.get("BUDDY_IGNORE_PATHS"):
        config.packages.ignore_paths = [
            path.strip() for path in ignore_paths.split(",") if path.strip()
        ]
    if strategy := os.environ.get("BUDDY_STRATEGY"):
        config.packages.strategy = strategy.strip().lower()

    if branch_prefix := os.environ.get("BUDDY_BRANCH_PREFIX"):
        config.pull_request.branch_prefix = branch_prefix.strip()

    if log_level := os.environ.get("BUDDY_LOG_LEVEL"):
        config.logging.log_level = log_level.upper()

    if rate_limit := get_env_float("BUDDY_RATE_LIMIT"):
        config.network.rate_limit = rate_limit
    if max_concurrent := get_env_int("BUDDY_MAX_CONCURRENT"):
        config.network.max_concurrent = max_concurrent
    if timeout := get_env_float("BUDDY_TIMEOUT"):
        config.network.timeout_seconds = timeout


def _parse_groups(raw_groups: Any) -> List[GroupConfig]:
    groups = []
    if not isinstance(raw_groups, list):
        console.print("⚠️  packages.groups must be a list, ignoring", style="yellow")
        return groups

    for raw in raw_groups:
        if not isinstance(raw, dict):
            continue
        data = {to_snake_case(key): value for key, value in raw.items()}
        patterns = data.get("patterns") or data.get("packages") or []
        if isinstance(patterns, str):
            patterns = [patterns]
        groups.append(
            GroupConfig(
                name=str(data.get("name", "")),
                patterns=[str(p) for p in patterns],
                strategy=data.get("strategy"),
            )
        )
    return groups


def apply_config_section(
    config: Any, section_data: Dict[str, Any], section_name: str
) -> None:
    """Apply configuration from dictionary to config section."""
    if not isinstance(section_data, dict):
        console.print(f"⚠️  Config section {section_name} must be a mapping", style="yellow")
        return

    for raw_key, value in section_data.items():
        key = to_snake_case(raw_key)
        if key == "groups" and section_name == "packages":
            config.groups = _parse_groups(value)
        elif hasattr(config, key):
            if isinstance(getattr(config, key), dict) and isinstance(value, dict):
                getattr(config, key).update(value)
            else:
                setattr(config, key, value)
        else:
            console.print(
                f"⚠️  Unknown config key in {section_name}: {raw_key}", style="yellow"
            )


def config_from_dict(file_config: Dict[str, Any]) -> BuddyConfig:
    """Build a configuration from already-parsed file contents."""
    config = BuddyConfig()
    sections = {
        "repository": config.repository,
        "packages": config.packages,
        "pull_request": config.pull_request,
        "network": config.network,
        "logging": config.logging,
    }

    for raw_name, section_data in file_config.items():
        name = to_snake_case(raw_name)
        if name in sections:
            apply_config_section(sections[name], section_data, name)
        else:
            console.print(f"⚠️  Unknown config section: {raw_name}", style="yellow")

    return config


def load_config(config_path: Optional[Path] = None) -> BuddyConfig:
    """Load configuration from file and environment."""
    config_file = config_path or find_config_file()
    file_config = load_config_file(config_file) if config_file else None
    config = config_from_dict(file_config) if file_config else BuddyConfig()

    load_environment_overrides(config)

    validation_errors = validate_config_values(config)
    if validation_errors:
        console.print("⚠️  Configuration validation errors:", style="red")
        for error in validation_errors:
            console.print(f"  • {error}", style="red")

    return config


def get_config() -> BuddyConfig:
    """Get the global configuration instance."""
    global _global_config
    if _global_config is None:
        _global_config = load_config()
    return _global_config


def reset_config() -> None:
    """Reset the global configuration (useful for testing)."""
    global _global_config
    _global_config = None


def create_sample_config() -> str:
    """Generate a sample configuration file."""
    sample_config = {
        "repository": {
            "provider": "github",
            "owner": "your-org",
            "name": "your-repo",
            "baseBranch": "main",
        },
        "packages": {
            "strategy": "all",
            "ignore": [],
            "ignorePaths": ["packages/test-envs/**"],
            "respectLatest": True,
            "groups": [
                {"name": "Linting", "patterns": ["eslint*", "@typescript-eslint/*"]},
            ],
        },
        "pullRequest": {
            "branchPrefix": "buddy",
            "labels": ["dependencies"],
            "reviewers": [],
            "assignees": [],
        },
        "network": {
            "timeoutSeconds": 30.0,
            "rateLimit": 10.0,
            "maxConcurrent": 10,
        },
        "logging": {
            "logLevel": "WARNING",
            "enableJson": True,
        },
    }

    return json.dumps(sample_config, indent=2)
