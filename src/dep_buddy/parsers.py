import json
import re
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import yaml

from .dependency import Dependency
from .error_handling import ErrorCallback, ErrorCategory, get_error_handler

MAX_FILE_SIZE_BYTES = 10 * 1024 * 1024

PACKAGE_JSON_SECTIONS = [
    "dependencies",
    "devDependencies",
    "peerDependencies",
    "optionalDependencies",
]

COMPOSER_SECTIONS = ["require", "require-dev"]

DEPENDENCY_YAML_NAMES = [
    "deps.yaml",
    "deps.yml",
    "dependencies.yaml",
    "dependencies.yml",
    "pkgx.yaml",
    "pkgx.yml",
    ".deps.yaml",
    ".deps.yml",
]

_ACTION_REF = re.compile(r"^[\w.\-]+/[\w.\-]+(/[\w.\-/]+)?$")


def _validate_file_path(file_path: str) -> Path:
    """
    Validate a manifest path before reading it.

    Args:
        file_path: The file path to validate

    Returns:
        Path: Resolved path object

    Raises:
        ValueError: If path is missing, not a regular file, or too large
    """
    if not file_path or not isinstance(file_path, str):
        raise ValueError("File path must be a non-empty string")

    try:
        path = Path(file_path).resolve()
    except (OSError, ValueError) as e:
        raise ValueError(f"Invalid file path: {e}")

    if not path.exists():
        raise ValueError(f"File does not exist: {path}")

    if not path.is_file():
        raise ValueError(f"Path is not a file: {path}")

    try:
        file_size = path.stat().st_size
    except OSError as e:
        raise ValueError(f"Cannot access file: {e}")
    if file_size > MAX_FILE_SIZE_BYTES:
        raise ValueError(
            f"File too large: {file_size} bytes (max: {MAX_FILE_SIZE_BYTES})"
        )

    return path


def _safe_read_file(path: Path) -> str:
    """
    Read a validated file as UTF-8.

    Raises:
        ValueError: If file cannot be read
    """
    try:
        with open(path, encoding="utf-8", errors="replace") as f:
            return f.read()
    except PermissionError:
        raise ValueError("Permission denied reading file")
    except OSError as e:
        raise ValueError(f"Error reading file: {e}")


def _load_json_object(file_path: str, function: str) -> Dict[str, Any]:
    error_handler = get_error_handler()
    validated_path = _validate_file_path(file_path)

    try:
        data = json.loads(_safe_read_file(validated_path))
    except json.JSONDecodeError as e:
        error_handler.error(
            ErrorCategory.PARSING,
            f"Invalid JSON format in {validated_path.name}: {e}",
            "parsers",
            function,
            exception=e,
            details={"file_path": validated_path.name},
        )
        raise ValueError(f"Invalid JSON format: {e}")

    if not isinstance(data, dict):
        error_handler.error(
            ErrorCategory.PARSING,
            f"{validated_path.name} must contain a JSON object",
            "parsers",
            function,
            details={
                "file_path": validated_path.name,
                "data_type": type(data).__name__,
            },
        )
        raise ValueError(f"{validated_path.name} must contain a JSON object")
    return data


def _register_callback(error_callback: Optional[ErrorCallback]) -> None:
    if error_callback:
        get_error_handler().register_callback(error_callback, ErrorCategory.PARSING)


def _section_dependencies(
    data: Dict[str, Any],
    sections: List[str],
    file_path: str,
    function: str,
    skip: Optional[Callable[[str], bool]] = None,
) -> List[Dependency]:
    dependencies = []
    for section in sections:
        section_deps = data.get(section, {})
        if not isinstance(section_deps, dict):
            continue
        for package, version in section_deps.items():
            if not isinstance(package, str) or not package.strip():
                get_error_handler().warning(
                    ErrorCategory.PARSING,
                    f"Invalid package name in {section}: {str(package)[:50]}",
                    "parsers",
                    function,
                    details={"section": section, "file_path": Path(file_path).name},
                )
                continue
            name = package.strip()
            if skip is not None and skip(name):
                continue
            if not isinstance(version, str) or not version.strip():
                continue

            dependencies.append(
                Dependency(
                    name=name,
                    current_version=version.strip(),
                    dependency_type=section,
                    file=file_path,
                )
            )
    return dependencies


def parse_package_json(
    file_path: str, error_callback: Optional[ErrorCallback] = None
) -> List[Dependency]:
    """
    Parses a package.json file and returns its declared dependencies.

    Extracts dependencies from:
    - dependencies
    - devDependencies
    - peerDependencies
    - optionalDependencies

    Args:
        file_path: Path to the package.json file
        error_callback: Optional callback for handling parsing errors

    Returns:
        List[Dependency]: Declared dependencies in file order

    Raises:
        ValueError: If file cannot be read or contains invalid JSON
    """
    _register_callback(error_callback)
    data = _load_json_object(file_path, "parse_package_json")
    return _section_dependencies(
        data, PACKAGE_JSON_SECTIONS, file_path, "parse_package_json"
    )


def _is_composer_platform_package(name: str) -> bool:
    """``php``, ``ext-*`` and ``lib-*`` are platform requirements, not packages."""
    lowered = name.lower()
    return (
        lowered == "php"
        or lowered.startswith("ext-")
        or lowered.startswith("lib-")
        or "/" not in lowered
    )


def parse_composer_json(
    file_path: str, error_callback: Optional[ErrorCallback] = None
) -> List[Dependency]:
    """
    Parses a composer.json file.

    Platform requirements (``php``, ``ext-*``, ``lib-*``) are skipped.

    Raises:
        ValueError: If file cannot be read or contains invalid JSON
    """
    _register_callback(error_callback)
    data = _load_json_object(file_path, "parse_composer_json")
    return _section_dependencies(
        data,
        COMPOSER_SECTIONS,
        file_path,
        "parse_composer_json",
        skip=_is_composer_platform_package,
    )


def _collect_uses(node: Any, found: List[str]) -> None:
    if isinstance(node, dict):
        for key, value in node.items():
            if key == "uses" and isinstance(value, str):
                found.append(value)
            else:
                _collect_uses(value, found)
    elif isinstance(node, list):
        for item in node:
            _collect_uses(item, found)


def _load_yaml(file_path: str, function: str) -> Any:
    validated_path = _validate_file_path(file_path)
    try:
        return yaml.safe_load(_safe_read_file(validated_path))
    except yaml.YAMLError as e:
        get_error_handler().error(
            ErrorCategory.PARSING,
            f"Invalid YAML in {validated_path.name}: {e}",
            "parsers",
            function,
            exception=e,
            details={"file_path": validated_path.name},
        )
        raise ValueError(f"Invalid YAML format: {e}")


def parse_github_workflow(
    file_path: str, error_callback: Optional[ErrorCallback] = None
) -> List[Dependency]:
    """
    Parses a GitHub Actions workflow and returns the actions it uses.

    Every ``uses: owner/repo@ref`` entry becomes a ``github-actions``
    dependency. Local actions (``./...``) and ``docker://`` images are skipped.

    Raises:
        ValueError: If file cannot be read or is not valid YAML
    """
    _register_callback(error_callback)
    data = _load_yaml(file_path, "parse_github_workflow")

    uses: List[str] = []
    _collect_uses(data, uses)

    dependencies = []
    seen = set()
    for reference in uses:
        reference = reference.strip().strip("'\"")
        if reference.startswith("./") or reference.startswith("docker://"):
            continue

        parts = reference.split("@")
        if len(parts) != 2:
            continue
        action, version = parts[0].strip(), parts[1].strip()
        if not version or not _ACTION_REF.match(action):
            continue

        if (action, version) in seen:
            continue
        seen.add((action, version))
        dependencies.append(
            Dependency(
                name=action,
                current_version=version,
                dependency_type="github-actions",
                file=file_path,
            )
        )

    return dependencies


def parse_dependency_yaml(
    file_path: str, error_callback: Optional[ErrorCallback] = None
) -> List[Dependency]:
    """
    Parses a pkgx-style dependency file (``deps.yaml`` and friends).

    The ``dependencies`` key may be a mapping of name to constraint or a list
    of ``name@constraint`` strings.

    Raises:
        ValueError: If file cannot be read or is not valid YAML
    """
    _register_callback(error_callback)
    data = _load_yaml(file_path, "parse_dependency_yaml")
    if not isinstance(data, dict):
        return []

    section = data.get("dependencies")
    entries: List[tuple] = []
    if isinstance(section, dict):
        entries = [(name, version) for name, version in section.items()]
    elif isinstance(section, list):
        for item in section:
            if isinstance(item, str) and "@" in item.lstrip("@"):
                name, _, version = item.rpartition("@")
                entries.append((name, version))

    dependencies = []
    for name, version in entries:
        if not isinstance(name, str) or not name.strip():
            continue
        if version is None:
            continue
        dependencies.append(
            Dependency(
                name=name.strip(),
                current_version=str(version).strip(),
                dependency_type="dependencies",
                file=file_path,
            )
        )
    return dependencies


def is_github_workflow(file_path: str) -> bool:
    normalized = file_path.replace("\\", "/")
    return ".github/workflows/" in normalized and normalized.endswith(
        (".yml", ".yaml")
    )


def get_supported_file_types() -> List[str]:
    """Return a list of supported dependency file types."""
    return [
        "package.json",
        "composer.json",
        ".github/workflows/*.yml",
        ".github/workflows/*.yaml",
    ] + DEPENDENCY_YAML_NAMES


def detect_file_type(file_path: str) -> str:
    """
    Detect the dependency file type based on filename.

    Args:
        file_path: Path to the file

    Returns:
        str: File type identifier

    Raises:
        ValueError: If file type is not supported
    """
    path = Path(file_path)
    filename = path.name.lower()

    file_type_map = {
        "package.json": "package_json",
        "composer.json": "composer_json",
    }

    if filename in file_type_map:
        return file_type_map[filename]
    if is_github_workflow(str(path)):
        return "github_workflow"
    if filename in DEPENDENCY_YAML_NAMES:
        return "dependency_yaml"

    raise ValueError(f"Unsupported file type: {filename}")


def parse_dependency_file(
    file_path: str, error_callback: Optional[ErrorCallback] = None
) -> List[Dependency]:
    """
    Parse any supported dependency file type.

    Args:
        file_path: Path to the dependency file
        error_callback: Optional callback for handling parsing errors

    Returns:
        List[Dependency]: Declared dependencies

    Raises:
        ValueError: If file type is not supported or parsing fails
    """
    file_type = detect_file_type(file_path)

    parser_map = {
        "package_json": parse_package_json,
        "composer_json": parse_composer_json,
        "github_workflow": parse_github_workflow,
        "dependency_yaml": parse_dependency_yaml,
    }

    parser = parser_map.get(file_type)
    if not parser:
        raise ValueError(f"No parser available for file type: {file_type}")

    return parser(file_path, error_callback)
