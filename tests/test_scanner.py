"""
Tests for the update scanning engine.
"""

import httpx
import pytest

from dep_buddy.cli_config import BuddyConfig, GroupConfig
from dep_buddy.dependency import UpdateType
from dep_buddy.scanner import UpdateScanner, get_update_scanner

REGISTRY_RESPONSES = {
    ("registry.npmjs.org", "/lodash"): {"dist-tags": {"latest": "4.17.21"}},
    ("registry.npmjs.org", "/react"): {
        "dist-tags": {"latest": "18.2.0"},
        "homepage": "https://react.dev/",
    },
    ("registry.npmjs.org", "/express"): {"dist-tags": {"latest": "4.19.2"}},
    ("registry.npmjs.org", "/left-pad"): {"dist-tags": {"latest": "1.3.0"}},
    ("repo.packagist.org", "/p2/monolog/monolog.json"): {
        "packages": {"monolog/monolog": [{"version": "3.5.0"}]}
    },
    ("api.github.com", "/repos/actions/checkout/releases/latest"): {"tag_name": "v4.1.1"},
}


class RecordingTransport:
    """Builds a MockTransport that serves REGISTRY_RESPONSES and records requests."""

    def __init__(self, overrides=None):
        self.requests = []
        self.overrides = overrides or {}

    def handler(self, request: httpx.Request) -> httpx.Response:
        key = (request.url.host, request.url.raw_path.decode())
        self.requests.append(key)
        if key in self.overrides:
            return httpx.Response(self.overrides[key])
        if key in REGISTRY_RESPONSES:
            return httpx.Response(200, json=REGISTRY_RESPONSES[key])
        return httpx.Response(404)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


class TestDiscovery:
    """Test manifest discovery."""

    def test_discover_manifests(self, sample_project):
        """Test that supported manifests are found and vendored trees skipped."""
        scanner = UpdateScanner(BuddyConfig())
        assert scanner.discover_manifests(str(sample_project)) == [
            "composer.json",
            "package.json",
            ".github/workflows/ci.yml",
            "packages/legacy/package.json",
        ]

    def test_ignore_paths(self, sample_project):
        """Test that ignored manifests are not discovered."""
        config = BuddyConfig()
        config.packages.ignore_paths = ["packages/legacy/**"]
        manifests = UpdateScanner(config).discover_manifests(str(sample_project))
        assert "packages/legacy/package.json" not in manifests

    def test_single_star_ignore_is_one_level(self, sample_project):
        """Test that ``*.json`` only ignores manifests at the project root."""
        config = BuddyConfig()
        config.packages.ignore_paths = ["*.json"]
        assert UpdateScanner(config).discover_manifests(str(sample_project)) == [
            ".github/workflows/ci.yml",
            "packages/legacy/package.json",
        ]

    def test_parse_errors_are_collected(self, sample_project):
        """Test that an unreadable manifest is skipped and reported."""
        (sample_project / "package.json").write_text("{ broken")
        scanner = UpdateScanner(BuddyConfig())
        manifests = scanner.discover_manifests(str(sample_project))

        dependencies, errors = scanner.parse_manifests(str(sample_project), manifests)

        assert len(errors) == 1
        assert errors[0].startswith("package.json:")
        assert {d.file for d in dependencies} == {
            "composer.json",
            ".github/workflows/ci.yml",
            "packages/legacy/package.json",
        }


class TestScan:
    """Test complete scans against mocked registries."""

    @pytest.mark.asyncio
    async def test_scan_finds_and_groups_updates(self, sample_project):
        """Test classification, ordering and grouping of a full scan."""
        recorder = RecordingTransport()
        scanner = get_update_scanner(BuddyConfig(), transport=recorder.transport())

        result = await scanner.scan(str(sample_project))

        assert result.has_updates
        assert result.total_packages == 6
        assert result.errors == []
        assert [(u.name, u.update_type) for u in result.updates] == [
            ("actions/checkout", UpdateType.MAJOR),
            ("react", UpdateType.MAJOR),
            ("express", UpdateType.MINOR),
            ("monolog/monolog", UpdateType.MINOR),
            ("lodash", UpdateType.PATCH),
        ]
        assert [g.name for g in result.groups] == [
            "Major Update - actions/checkout",
            "Major Update - react",
            "Non-Major Updates",
        ]
        react = next(u for u in result.updates if u.name == "react")
        assert react.homepage == "https://react.dev/"
        assert react.file == "package.json"
        express = next(u for u in result.updates if u.name == "express")
        assert express.file == "packages/legacy/package.json"

    @pytest.mark.asyncio
    async def test_dynamic_versions_not_looked_up(self, sample_project):
        """Test that respect_latest skips packages pinned to latest."""
        recorder = RecordingTransport()
        await UpdateScanner(BuddyConfig(), recorder.transport()).scan(str(sample_project))
        assert ("registry.npmjs.org", "/left-pad") not in recorder.requests

        config = BuddyConfig()
        config.packages.respect_latest = False
        recorder = RecordingTransport()
        result = await UpdateScanner(config, recorder.transport()).scan(str(sample_project))
        assert ("registry.npmjs.org", "/left-pad") in recorder.requests
        assert "left-pad" not in [u.name for u in result.updates]

    @pytest.mark.asyncio
    async def test_each_package_looked_up_once(self, sample_project):
        """Test that a package declared twice costs one request."""
        (sample_project / "packages" / "legacy" / "package.json").write_text(
            '{"dependencies": {"express": "^4.18.0", "lodash": "^4.17.20"}}'
        )
        recorder = RecordingTransport()
        result = await UpdateScanner(BuddyConfig(), recorder.transport()).scan(
            str(sample_project)
        )

        assert recorder.requests.count(("registry.npmjs.org", "/lodash")) == 1
        lodash = [u for u in result.updates if u.name == "lodash"]
        assert len(lodash) == 1
        assert lodash[0].file == "package.json"

    @pytest.mark.asyncio
    async def test_strategy_and_ignored_names(self, sample_project):
        """Test the major strategy and ignored package names."""
        config = BuddyConfig()
        config.packages.strategy = "major"
        config.packages.ignore = ["actions/*"]

        result = await UpdateScanner(config, RecordingTransport().transport()).scan(
            str(sample_project)
        )
        assert [u.name for u in result.updates] == ["react"]

    @pytest.mark.asyncio
    async def test_configured_groups(self, sample_project):
        """Test that configured groups are used for grouping."""
        config = BuddyConfig()
        config.packages.groups = [GroupConfig(name="Frontend", patterns=["react", "lodash"])]

        result = await UpdateScanner(config, RecordingTransport().transport()).scan(
            str(sample_project)
        )
        assert result.groups[0].name == "Frontend"
        assert sorted(u.name for u in result.groups[0].updates) == ["lodash", "react"]

    @pytest.mark.asyncio
    async def test_registry_failures_are_reported(self, sample_project):
        """Test that registry errors are collected without aborting the scan."""
        recorder = RecordingTransport(overrides={("registry.npmjs.org", "/react"): 500})
        result = await UpdateScanner(BuddyConfig(), recorder.transport()).scan(
            str(sample_project)
        )

        assert any(error.startswith("npm:react: HTTP 500") for error in result.errors)
        assert "react" not in [u.name for u in result.updates]
        assert "lodash" in [u.name for u in result.updates]

    @pytest.mark.asyncio
    async def test_missing_packages_are_not_errors(self, sample_project):
        """Test that a 404 is silently skipped."""
        recorder = RecordingTransport(overrides={("registry.npmjs.org", "/express"): 404})
        result = await UpdateScanner(BuddyConfig(), recorder.transport()).scan(
            str(sample_project)
        )
        assert result.errors == []
        assert "express" not in [u.name for u in result.updates]

    @pytest.mark.asyncio
    async def test_not_a_directory(self, tmp_path):
        """Test scanning a path that is not a directory."""
        file_path = tmp_path / "package.json"
        file_path.write_text("{}")
        result = await UpdateScanner(BuddyConfig()).scan(str(file_path))

        assert not result.has_updates
        assert result.total_packages == 0
        assert "not a directory" in result.errors[0]

    @pytest.mark.asyncio
    async def test_up_to_date_project(self, tmp_path):
        """Test a project without outdated dependencies."""
        (tmp_path / "package.json").write_text('{"dependencies": {"lodash": "4.17.21"}}')
        result = await UpdateScanner(BuddyConfig(), RecordingTransport().transport()).scan(
            str(tmp_path)
        )
        assert result.total_packages == 1
        assert result.updates == []
        assert result.groups == []
