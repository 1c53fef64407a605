"""
Update scanning engine.

Discovers manifests in a project, resolves the latest published version of
every declared dependency, and turns the outdated ones into classified,
grouped package updates ready for rendering.
"""

import asyncio
import fnmatch
import os
import time
import uuid
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import httpx

from .auto_close import is_dynamic_version, match_path_glob
from .classifier import classify, is_upgrade
from .cli_config import BuddyConfig
from .dependency import Dependency, PackageUpdate, UpdateGroup
from .error_handling import ErrorCategory, get_error_handler, log_parsing_error
from .grouping import (
    dedupe_updates,
    filter_updates_by_strategy,
    group_updates,
    group_updates_by_config,
    sort_updates_by_priority,
)
from .parsers import detect_file_type, parse_dependency_file
from .registry_clients import (
    BaseRegistryClient,
    LatestVersionResult,
    get_registry_client,
    registry_for_dependency,
)
from .structured_logging import get_scanner_logger, log_scan_complete, log_scan_start

SKIPPED_DIRECTORIES = {"node_modules", "vendor", ".git", "dist", "build", ".venv"}


@dataclass(frozen=True)
class ScanResult:
    """Complete results of scanning a project for updates."""

    total_packages: int
    updates: List[PackageUpdate]
    groups: List[UpdateGroup]
    duration_ms: int
    errors: List[str] = field(default_factory=list)

    @property
    def has_updates(self) -> bool:
        return bool(self.updates)


class UpdateScanner:
    """
    Scans a project for outdated dependencies.

    The configuration is passed in explicitly; registry lookups run
    concurrently, bounded by ``network.max_concurrent``.
    """

    def __init__(
        self,
        config: Optional[BuddyConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the scanner.

        Args:
            config: Bot configuration; defaults are used when omitted
            transport: Optional httpx transport shared by all registry clients
        """
        self.config = config or BuddyConfig()
        self.transport = transport
        self._semaphore: Optional[asyncio.Semaphore] = None

    @property
    def semaphore(self) -> asyncio.Semaphore:
        """Lazy-load semaphore to avoid event loop issues."""
        if self._semaphore is None:
            self._semaphore = asyncio.Semaphore(self.config.network.max_concurrent)
        return self._semaphore

    def _is_ignored_path(self, relative_path: str) -> bool:
        return any(
            match_path_glob(relative_path, pattern)
            for pattern in self.config.packages.ignore_paths
        )

    def discover_manifests(self, project_path: str) -> List[str]:
        """
        Find supported manifests below ``project_path``.

        Returns:
            List[str]: Paths relative to the project root, in sorted order
        """
        root = Path(project_path)
        manifests = []

        for current_dir, dir_names, file_names in os.walk(root):
            dir_names[:] = sorted(
                d for d in dir_names if d not in SKIPPED_DIRECTORIES
            )
            for file_name in sorted(file_names):
                relative = (Path(current_dir) / file_name).relative_to(root).as_posix()
                try:
                    detect_file_type(relative)
                except ValueError:
                    continue
                if self._is_ignored_path(relative):
                    get_scanner_logger().debug("manifest_ignored", file=relative)
                    continue
                manifests.append(relative)

        return manifests

    def parse_manifests(
        self, project_path: str, manifests: List[str]
    ) -> Tuple[List[Dependency], List[str]]:
        """Parse every manifest, skipping (and reporting) unreadable ones."""
        dependencies: List[Dependency] = []
        errors: List[str] = []
        root = Path(project_path)

        for relative in manifests:
            try:
                parsed = parse_dependency_file(str(root / relative))
            except ValueError as e:
                log_parsing_error(
                    f"Skipping unreadable manifest: {e}",
                    "scanner",
                    "parse_manifests",
                    file_path=relative,
                    exception=e,
                )
                errors.append(f"{relative}: {e}")
                continue
            dependencies.extend(replace(dep, file=relative) for dep in parsed)

        return dependencies, errors

    def _should_check(self, dependency: Dependency) -> bool:
        packages = self.config.packages
        if any(fnmatch.fnmatchcase(dependency.name, pattern) for pattern in packages.ignore):
            return False
        if packages.respect_latest and is_dynamic_version(dependency.current_version):
            get_scanner_logger().debug(
                "dynamic_version_skipped",
                package_name=dependency.name,
                current_version=dependency.current_version,
            )
            return False
        return True

    async def _lookup(
        self, client: BaseRegistryClient, package_name: str
    ) -> LatestVersionResult:
        async with self.semaphore:
            return await client.get_latest_version(package_name)

    async def _resolve_registry(
        self, registry_type: str, package_names: List[str]
    ) -> Dict[str, LatestVersionResult]:
        network = self.config.network
        client = get_registry_client(
            registry_type,
            rate_limit_rps=network.rate_limit,
            timeout=network.timeout_seconds,
            base_url=network.registry_urls.get(registry_type),
            user_agent=network.user_agent,
            transport=self.transport,
        )
        async with client:
            results = await asyncio.gather(
                *(self._lookup(client, name) for name in package_names)
            )
        return dict(zip(package_names, results))

    async def resolve_latest_versions(
        self, dependencies: List[Dependency]
    ) -> Dict[Tuple[str, str], LatestVersionResult]:
        """
        Look up each distinct package once per registry.

        Returns:
            Results keyed by ``(registry_type, package_name)``
        """
        by_registry: Dict[str, List[str]] = {}
        for dependency in dependencies:
            registry = registry_for_dependency(dependency.dependency_type, dependency.file)
            if registry is None:
                get_scanner_logger().debug(
                    "no_registry_for_dependency",
                    package_name=dependency.name,
                    file=dependency.file,
                )
                continue
            names = by_registry.setdefault(registry, [])
            if dependency.name not in names:
                names.append(dependency.name)

        registry_results = await asyncio.gather(
            *(
                self._resolve_registry(registry, names)
                for registry, names in by_registry.items()
            )
        )

        resolved: Dict[Tuple[str, str], LatestVersionResult] = {}
        for registry, results in zip(by_registry, registry_results):
            for name, result in results.items():
                resolved[(registry, name)] = result
        return resolved

    def build_updates(
        self,
        dependencies: List[Dependency],
        resolved: Dict[Tuple[str, str], LatestVersionResult],
    ) -> List[PackageUpdate]:
        """Classified updates for every dependency whose latest version is newer."""
        updates = []
        for dependency in dependencies:
            registry = registry_for_dependency(dependency.dependency_type, dependency.file)
            result = resolved.get((registry, dependency.name)) if registry else None
            if result is None or not result.found:
                continue
            if not is_upgrade(dependency.current_version, result.latest_version):
                continue

            updates.append(
                PackageUpdate.from_dependency(
                    dependency,
                    new_version=result.latest_version,
                    update_type=classify(dependency.current_version, result.latest_version),
                    homepage=result.homepage or result.repository,
                )
            )
        return updates

    def group(self, updates: List[PackageUpdate]) -> List[UpdateGroup]:
        if self.config.packages.groups:
            return group_updates_by_config(updates, self.config.packages.groups)
        return group_updates(updates)

    async def scan(self, project_path: str) -> ScanResult:
        """
        Scan a project for dependency updates.

        Args:
            project_path: Root directory of the project

        Returns:
            ScanResult with deduplicated, sorted updates and their groups
        """
        start_time = time.monotonic()
        run_id = uuid.uuid4().hex[:12]

        if not Path(project_path).is_dir():
            get_error_handler().error(
                ErrorCategory.FILESYSTEM,
                f"Project path is not a directory: {project_path}",
                "scanner",
                "scan",
            )
            return ScanResult(
                total_packages=0,
                updates=[],
                groups=[],
                duration_ms=0,
                errors=[f"Project path is not a directory: {project_path}"],
            )

        manifests = self.discover_manifests(project_path)
        log_scan_start(run_id, str(project_path), len(manifests))

        dependencies, errors = self.parse_manifests(project_path, manifests)
        candidates = [dep for dep in dependencies if self._should_check(dep)]

        resolved = await self.resolve_latest_versions(candidates)
        for result in resolved.values():
            if result.error and result.error != "Package not found":
                errors.append(f"{result.registry_type}:{result.package_name}: {result.error}")

        updates = self.build_updates(candidates, resolved)
        updates = filter_updates_by_strategy(updates, self.config.packages.strategy)
        updates = sort_updates_by_priority(dedupe_updates(updates))
        groups = self.group(updates)

        duration_ms = int((time.monotonic() - start_time) * 1000)
        log_scan_complete(
            run_id,
            duration_ms,
            len(dependencies),
            len(updates),
            len(groups),
            len(errors),
        )

        return ScanResult(
            total_packages=len(dependencies),
            updates=updates,
            groups=groups,
            duration_ms=duration_ms,
            errors=errors,
        )


def get_update_scanner(
    config: Optional[BuddyConfig] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> UpdateScanner:
    """Factory function to create an update scanner."""
    return UpdateScanner(config, transport)
