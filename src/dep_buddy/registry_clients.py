"""
Registry clients for resolving the latest published version of a package.

Implements rate-limited async clients for npm, Packagist and GitHub releases
(used for GitHub Actions). Failures never propagate: they are reported to the
error handler and returned in ``LatestVersionResult.error``.
"""

import asyncio
import os
import re
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple
from urllib.parse import quote

import httpx
from httpx import HTTPStatusError, RequestError

from .error_handling import log_network_error
from .structured_logging import log_registry_check

DEFAULT_USER_AGENT = "dep-buddy/1.0.0 (Dependency Update Bot)"

DEFAULT_REGISTRY_URLS = {
    "npm": "https://registry.npmjs.org",
    "packagist": "https://repo.packagist.org",
    "github": "https://api.github.com",
}

_UNSTABLE_VERSION = re.compile(r"(dev|alpha|beta|rc|snapshot|preview)", re.IGNORECASE)
_PACKAGE_NAME = re.compile(r"^(@[\w.\-]+/)?[\w.\-]+(/[\w.\-]+)?$")


@dataclass(frozen=True)
class LatestVersionResult:
    """Result of resolving the latest version of a package."""

    package_name: str
    registry_type: str
    latest_version: Optional[str] = None
    homepage: Optional[str] = None
    repository: Optional[str] = None
    error: Optional[str] = None
    check_duration_ms: Optional[int] = None

    @property
    def found(self) -> bool:
        return self.latest_version is not None and self.error is None


class RateLimiter:
    """Simple rate limiter to prevent overwhelming registries."""

    def __init__(self, requests_per_second: float = 10.0):
        self.requests_per_second = requests_per_second
        self.min_interval = 1.0 / requests_per_second
        self.last_request_time = 0.0
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        """Wait if necessary to respect rate limits."""
        async with self._lock:
            current_time = time.monotonic()
            time_since_last = current_time - self.last_request_time

            if time_since_last < self.min_interval:
                await asyncio.sleep(self.min_interval - time_since_last)

            self.last_request_time = time.monotonic()


class BaseRegistryClient(ABC):
    """
    Base class for registry clients.

    Uses the async context manager pattern for httpx.AsyncClient resource
    management: the HTTP client exists only between ``__aenter__`` and
    ``__aexit__``.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        rate_limit_rps: float = 10.0,
        timeout: float = 30.0,
        user_agent: str = DEFAULT_USER_AGENT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or DEFAULT_REGISTRY_URLS[self.get_registry_type()]).rstrip("/")
        self.rate_limiter = RateLimiter(rate_limit_rps)
        self.timeout = timeout
        self.transport = transport
        self.client: Optional[httpx.AsyncClient] = None
        self._headers = {
            "User-Agent": user_agent,
            "Accept": "application/json",
        }

    async def __aenter__(self):
        """Initialize the HTTP client when entering the context."""
        self.client = httpx.AsyncClient(
            timeout=self.timeout, headers=self._headers, transport=self.transport
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Clean up the HTTP client when exiting the context."""
        if self.client:
            await self.client.aclose()
            self.client = None

    @abstractmethod
    def get_registry_type(self) -> str:
        """Get the registry type identifier."""

    @abstractmethod
    def _build_url(self, package_name: str) -> str:
        """URL of the registry document describing ``package_name``."""

    @abstractmethod
    def _extract_latest(
        self, package_name: str, data: Any
    ) -> Tuple[Optional[str], Optional[str], Optional[str]]:
        """``(latest_version, homepage, repository)`` from a registry document."""

    def _validate_package_name(self, package_name: str) -> Optional[str]:
        if not package_name or not isinstance(package_name, str):
            return "Invalid package name"
        if not _PACKAGE_NAME.match(package_name.strip()):
            return "Invalid package name"
        return None

    def _result(self, package_name: str, **kwargs) -> LatestVersionResult:
        return LatestVersionResult(
            package_name=package_name, registry_type=self.get_registry_type(), **kwargs
        )

    async def get_latest_version(self, package_name: str) -> LatestVersionResult:
        """
        Resolve the latest stable version of a package.

        Args:
            package_name: The name of the package to look up

        Returns:
            LatestVersionResult with the version, or error details
        """
        start_time = time.time()

        validation_error = self._validate_package_name(package_name)
        if validation_error:
            return self._result(package_name, error=validation_error)

        if self.client is None:
            return self._result(
                package_name,
                error="HTTP client not initialized - use within async context manager",
            )

        url = self._build_url(package_name.strip())

        try:
            await self.rate_limiter.acquire()
            response = await self.client.get(url)
            duration_ms = int((time.time() - start_time) * 1000)

            if response.status_code == 404:
                result = self._result(
                    package_name,
                    error="Package not found",
                    check_duration_ms=duration_ms,
                )
            else:
                response.raise_for_status()
                latest, homepage, repository = self._extract_latest(
                    package_name, response.json()
                )
                result = self._result(
                    package_name,
                    latest_version=latest,
                    homepage=homepage,
                    repository=repository,
                    error=None if latest else "No stable version published",
                    check_duration_ms=duration_ms,
                )

        except HTTPStatusError as e:
            log_network_error(
                f"Registry returned HTTP {e.response.status_code} for {package_name}",
                "registry_clients",
                "get_latest_version",
                url=url,
                status_code=e.response.status_code,
                exception=e,
            )
            result = self._result(
                package_name,
                error=f"HTTP {e.response.status_code}: {e.response.text[:100]}",
            )
        except RequestError as e:
            log_network_error(
                f"Network error looking up {package_name}",
                "registry_clients",
                "get_latest_version",
                url=url,
                exception=e,
            )
            result = self._result(package_name, error=f"Network error: {str(e)}")
        except ValueError as e:
            log_network_error(
                f"Unreadable registry response for {package_name}",
                "registry_clients",
                "get_latest_version",
                url=url,
                exception=e,
            )
            result = self._result(package_name, error=f"Invalid response: {str(e)}")

        log_registry_check(
            package_name,
            self.get_registry_type(),
            result.latest_version,
            result.check_duration_ms,
        )
        return result


class NPMClient(BaseRegistryClient):
    """Client for the npm registry; the latest version is ``dist-tags.latest``."""

    def get_registry_type(self) -> str:
        return "npm"

    def _build_url(self, package_name: str) -> str:
        return f"{self.base_url}/{quote(package_name, safe='@')}"

    def _extract_latest(self, package_name: str, data: Any):
        if not isinstance(data, dict):
            raise ValueError("npm document is not an object")
        latest_version = (data.get("dist-tags") or {}).get("latest")
        version_data = (data.get("versions") or {}).get(latest_version) or {}
        homepage = version_data.get("homepage") or data.get("homepage")
        repository = self._extract_repository_url(
            version_data.get("repository") or data.get("repository")
        )
        return latest_version, homepage, repository

    def _extract_repository_url(self, repository_data: Any) -> Optional[str]:
        """Extract repository URL from npm repository field."""
        if not repository_data:
            return None

        if isinstance(repository_data, str):
            url = repository_data
        elif isinstance(repository_data, dict):
            url = repository_data.get("url")
        else:
            return None

        if not url:
            return None
        url = re.sub(r"^git\+", "", url)
        url = re.sub(r"^git://", "https://", url)
        return re.sub(r"\.git$", "", url)


def _strip_tag_prefix(version: str) -> str:
    return version[1:] if re.match(r"^v\d", version) else version


class PackagistClient(BaseRegistryClient):
    """Client for Packagist metadata (``/p2/<vendor>/<package>.json``)."""

    def get_registry_type(self) -> str:
        return "packagist"

    def _validate_package_name(self, package_name: str) -> Optional[str]:
        error = super()._validate_package_name(package_name)
        if error is None and "/" not in package_name:
            return "Composer packages must be named vendor/package"
        return error

    def _build_url(self, package_name: str) -> str:
        vendor, _, name = package_name.lower().partition("/")
        return f"{self.base_url}/p2/{quote(vendor)}/{quote(name)}.json"

    def _extract_latest(self, package_name: str, data: Any):
        packages = data.get("packages") if isinstance(data, dict) else None
        if not isinstance(packages, dict):
            raise ValueError("Packagist document has no packages")

        versions = packages.get(package_name.lower()) or packages.get(package_name) or []
        homepage = None
        repository = None
        for entry in versions:
            if not isinstance(entry, dict):
                continue
            homepage = entry.get("homepage") or homepage
            source = entry.get("source")
            if isinstance(source, dict) and source.get("url"):
                repository = re.sub(r"\.git$", "", source["url"])
            version = str(entry.get("version", ""))
            if version and not _UNSTABLE_VERSION.search(version):
                return _strip_tag_prefix(version), homepage, repository
        return None, homepage, repository


class GitHubActionsClient(BaseRegistryClient):
    """
    Client for GitHub releases, used to resolve GitHub Actions.

    ``owner/repo/path`` action references are looked up by ``owner/repo``.
    A ``GITHUB_TOKEN`` from the environment is sent when present.
    """

    def __init__(self, *args, token: Optional[str] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self._headers["Accept"] = "application/vnd.github+json"
        token = token or os.environ.get("GITHUB_TOKEN")
        if token:
            self._headers["Authorization"] = f"Bearer {token}"

    def get_registry_type(self) -> str:
        return "github"

    def _build_url(self, package_name: str) -> str:
        owner, repo = package_name.split("/")[:2]
        return f"{self.base_url}/repos/{quote(owner)}/{quote(repo)}/releases/latest"

    def _validate_package_name(self, package_name: str) -> Optional[str]:
        if not package_name or not isinstance(package_name, str):
            return "Invalid action name"
        if len(package_name.strip().split("/")) < 2:
            return "Actions must be named owner/repo"
        return None

    def _extract_latest(self, package_name: str, data: Any):
        if not isinstance(data, dict):
            raise ValueError("GitHub release is not an object")
        owner_repo = "/".join(package_name.split("/")[:2])
        return (
            data.get("tag_name"),
            data.get("html_url"),
            f"https://github.com/{owner_repo}",
        )


REGISTRY_FOR_DEPENDENCY_TYPE: Dict[str, str] = {
    "dependencies": "npm",
    "devDependencies": "npm",
    "peerDependencies": "npm",
    "optionalDependencies": "npm",
    "require": "packagist",
    "require-dev": "packagist",
    "github-actions": "github",
}


def registry_for_dependency(dependency_type: str, file_path: str) -> Optional[str]:
    """Registry that publishes a dependency, or None when none is supported."""
    file_name = file_path.replace("\\", "/").rsplit("/", 1)[-1].lower()
    if file_name not in ("package.json", "composer.json") and dependency_type != "github-actions":
        return None
    return REGISTRY_FOR_DEPENDENCY_TYPE.get(dependency_type)


def get_registry_client(
    registry_type: str,
    rate_limit_rps: float = 10.0,
    timeout: float = 30.0,
    base_url: Optional[str] = None,
    user_agent: str = DEFAULT_USER_AGENT,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> BaseRegistryClient:
    """
    Factory function to get the appropriate registry client.

    Args:
        registry_type: Type of registry ('npm', 'packagist', 'github')
        rate_limit_rps: Requests per second limit
        timeout: Request timeout in seconds
        base_url: Registry base URL override
        user_agent: User-Agent header value
        transport: Optional httpx transport (used by tests)

    Returns:
        Configured registry client

    Raises:
        ValueError: If registry_type is not supported
    """
    clients = {
        "npm": NPMClient,
        "packagist": PackagistClient,
        "github": GitHubActionsClient,
    }
    client_class = clients.get(registry_type)
    if client_class is None:
        raise ValueError(f"Unsupported registry type: {registry_type}")
    return client_class(
        base_url=base_url,
        rate_limit_rps=rate_limit_rps,
        timeout=timeout,
        user_agent=user_agent,
        transport=transport,
    )
