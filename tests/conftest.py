"""
Shared fixtures for dep-buddy tests.
"""

import json
from datetime import datetime, timezone

import pytest

from dep_buddy.cli_config import reset_config
from dep_buddy.dependency import PackageUpdate, UpdateType
from dep_buddy.error_handling import setup_error_handling

FIXED_NOW = datetime(2024, 3, 15, 12, 30, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def isolated_config(monkeypatch, tmp_path):
    """Keep every test away from real config files and BUDDY_* variables."""
    for key in (
        "BUDDY_RESPECT_LATEST",
        "BUDDY_IGNORE_PATHS",
        "BUDDY_STRATEGY",
        "BUDDY_BRANCH_PREFIX",
        "BUDDY_LOG_LEVEL",
        "BUDDY_RATE_LIMIT",
        "BUDDY_MAX_CONCURRENT",
        "BUDDY_TIMEOUT",
        "GITHUB_TOKEN",
    ):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    monkeypatch.chdir(tmp_path)
    reset_config()
    setup_error_handling()
    yield
    reset_config()


@pytest.fixture
def fixed_now():
    return FIXED_NOW


def make_update(
    name,
    current,
    new,
    update_type=UpdateType.MINOR,
    file="package.json",
    dependency_type="dependencies",
    **kwargs,
):
    """Build a PackageUpdate with sensible defaults."""
    return PackageUpdate(
        name=name,
        current_version=current,
        new_version=new,
        update_type=update_type,
        dependency_type=dependency_type,
        file=file,
        **kwargs,
    )


@pytest.fixture
def sample_updates():
    """One major, one minor and one patch update from different manifests."""
    return [
        make_update("react", "17.0.2", "18.2.0", UpdateType.MAJOR),
        make_update(
            "laravel/framework",
            "^10.0",
            "10.4.0",
            UpdateType.MINOR,
            file="composer.json",
            dependency_type="require",
        ),
        make_update(
            "actions/checkout",
            "v4.1.0",
            "v4.1.1",
            UpdateType.PATCH,
            file=".github/workflows/ci.yml",
            dependency_type="github-actions",
        ),
    ]


@pytest.fixture
def sample_package_json(tmp_path):
    """Create a sample package.json file."""
    content = {
        "name": "demo",
        "dependencies": {"lodash": "^4.17.20", "left-pad": "latest"},
        "devDependencies": {"typescript": "~5.0.4"},
    }
    file_path = tmp_path / "package.json"
    file_path.write_text(json.dumps(content, indent=2))
    return file_path


@pytest.fixture
def sample_composer_json(tmp_path):
    """Create a sample composer.json file."""
    content = {
        "require": {
            "php": "^8.1",
            "ext-json": "*",
            "laravel/framework": "^10.0",
        },
        "require-dev": {"phpunit/phpunit": "^10.1"},
    }
    file_path = tmp_path / "composer.json"
    file_path.write_text(json.dumps(content, indent=2))
    return file_path


@pytest.fixture
def sample_workflow(tmp_path):
    """Create a sample GitHub Actions workflow."""
    workflow_dir = tmp_path / ".github" / "workflows"
    workflow_dir.mkdir(parents=True)
    file_path = workflow_dir / "ci.yml"
    file_path.write_text(
        """name: CI
on: [push]
jobs:
  test:
    runs-on: ubuntu-latest
    steps:
      - uses: actions/checkout@v3
      - uses: actions/setup-node@v3
        with:
          node-version: 20
      - uses: ./.github/actions/local
      - uses: docker://alpine:3.18
      - uses: actions/checkout@v3
"""
    )
    return file_path


@pytest.fixture
def sample_deps_yaml(tmp_path):
    """Create a sample pkgx-style deps.yaml."""
    file_path = tmp_path / "deps.yaml"
    file_path.write_text(
        """dependencies:
  bun.sh: ^1.0.0
  lodash: ^4.17.20
"""
    )
    return file_path


@pytest.fixture
def sample_project(tmp_path):
    """A project with an npm manifest, a Composer manifest and a workflow."""
    project = tmp_path / "project"
    project.mkdir()
    (project / "package.json").write_text(
        json.dumps(
            {
                "dependencies": {"lodash": "^4.17.20", "react": "^17.0.2"},
                "devDependencies": {"left-pad": "latest"},
            }
        )
    )
    (project / "composer.json").write_text(
        json.dumps({"require": {"php": "^8.1", "monolog/monolog": "^3.0.0"}})
    )
    workflows = project / ".github" / "workflows"
    workflows.mkdir(parents=True)
    (workflows / "ci.yml").write_text(
        "jobs:\n  build:\n    steps:\n      - uses: actions/checkout@v3\n"
    )
    legacy = project / "packages" / "legacy"
    legacy.mkdir(parents=True)
    (legacy / "package.json").write_text(
        json.dumps({"dependencies": {"express": "^4.18.0"}})
    )
    node_modules = project / "node_modules" / "lodash"
    node_modules.mkdir(parents=True)
    (node_modules / "package.json").write_text(json.dumps({"dependencies": {"x": "1.0.0"}}))
    return project


@pytest.fixture
def legacy_npm_body():
    """A body rendered before the structured state block existed."""
    return """This PR contains the following updates:

| Package | Change | Age | Adoption | Passing | Confidence |
|---|---|---|---|---|---|
| [@types/node](https://github.com/DefinitelyTyped/DefinitelyTyped) ([source](https://github.com/x)) | [`20.8.0` -> `20.9.0`](https://renovatebot.com/diffs/npm/@types%2fnode/20.8.0/20.9.0) | [![age](https://badge)](https://docs) | [![adoption](https://badge)](https://docs) |
| [lodash](https://lodash.com) | [`^4.17.20` -> `^4.17.21`](https://renovatebot.com/diffs/npm/lodash/4.17.20/4.17.21) | [![age](https://badge)](https://docs) |

---

### Release Notes

Thanks @octocat for the fix, mail me at dev@example.com.
"""
