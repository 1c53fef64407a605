# In src/dep_buddy/dependency.py
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class UpdateType(Enum):
    """Severity of a version bump."""

    MAJOR = "major"
    MINOR = "minor"
    PATCH = "patch"

    @property
    def rank(self) -> int:
        return {"major": 3, "minor": 2, "patch": 1}[self.value]

    @classmethod
    def parse(cls, value: Any) -> "UpdateType":
        """Accept an UpdateType or its string value."""
        if isinstance(value, cls):
            return value
        return cls(str(value).strip().lower())


@dataclass(frozen=True)
class Dependency:
    """A unified internal data structure to represent a declared dependency."""

    name: str
    current_version: str
    dependency_type: str
    file: str
    metadata: Optional[Dict[str, Any]] = field(default=None, compare=False)


@dataclass(frozen=True)
class PackageUpdate:
    """A dependency together with the version it should move to."""

    name: str
    current_version: str
    new_version: str
    update_type: UpdateType
    dependency_type: str = "dependencies"
    file: str = "package.json"
    metadata: Optional[Dict[str, Any]] = field(default=None, compare=False)
    release_notes_url: Optional[str] = None
    changelog_url: Optional[str] = None
    homepage: Optional[str] = None

    @classmethod
    def from_dependency(
        cls,
        dependency: Dependency,
        new_version: str,
        update_type: UpdateType,
        homepage: Optional[str] = None,
    ) -> "PackageUpdate":
        return cls(
            name=dependency.name,
            current_version=dependency.current_version,
            new_version=new_version,
            update_type=update_type,
            dependency_type=dependency.dependency_type,
            file=dependency.file,
            metadata=dependency.metadata,
            homepage=homepage,
        )

    @property
    def dedupe_key(self) -> str:
        return f"{self.name}:{self.current_version}:{self.new_version}"


@dataclass
class UpdateGroup:
    """A batch of package updates intended to become a single pull request."""

    name: str
    update_type: UpdateType
    title: str
    updates: List[PackageUpdate]
    body: str = ""


@dataclass(frozen=True)
class RecoveredFact:
    """An update triple recovered from a previously rendered pull-request body."""

    name: str
    current_version: str
    new_version: str

    def to_dict(self) -> Dict[str, str]:
        return {
            "name": self.name,
            "currentVersion": self.current_version,
            "newVersion": self.new_version,
        }
