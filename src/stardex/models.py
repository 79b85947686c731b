"""Canonical StarRecord schema and validation."""

from __future__ import annotations

import enum
import json
from dataclasses import asdict, dataclass, field, fields
from typing import Any, Mapping

from .errors import ValidationError


class Source(str, enum.Enum):
    GITHUB = "github"
    FIREFOX = "firefox"
    CHROME = "chrome"
    AWESOME = "awesome"
    MANUAL = "manual"


SOURCES: tuple[str, ...] = tuple(s.value for s in Source)

REQUIRED_FIELDS = ("id", "owner", "name", "full_name", "source")

# Fields that count towards how "complete" a record is when merging.
INFORMATIONAL_FIELDS = (
    "description",
    "homepage",
    "language",
    "license",
    "url",
    "topics",
    "stars",
    "forks",
    "issues",
    "created",
    "updated",
    "pushed",
    "starred_at",
)


@dataclass
class StarRecord:
    """One starred or bookmarked repository."""

    id: int
    owner: str
    name: str
    full_name: str
    source: str
    synced_at: str
    description: str | None = None
    homepage: str | None = None
    language: str | None = None
    license: str | None = None
    url: str | None = None
    topics: list[str] = field(default_factory=list)
    stars: int = 0
    forks: int = 0
    issues: int = 0
    created: str | None = None
    updated: str | None = None
    pushed: str | None = None
    starred_at: str | None = None
    archived: bool = False
    fork: bool = False

    @property
    def key(self) -> str:
        return self.full_name.lower()

    def populated_count(self) -> int:
        return sum(1 for name in INFORMATIONAL_FIELDS if is_populated(getattr(self, name)))

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    def to_row(self) -> dict[str, Any]:
        """Column values for the ``stars`` table."""
        row = self.to_dict()
        row["topics"] = json.dumps(self.topics)
        row["archived"] = int(self.archived)
        row["fork"] = int(self.fork)
        return row

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> StarRecord:
        """Rebuild a record from a ``stars`` row."""
        from .normalize import normalize_topics

        return cls(
            id=int(row["id"]),
            owner=row["owner"],
            name=row["name"],
            full_name=row["full_name"],
            source=row["source"],
            synced_at=row["synced_at"],
            description=row["description"],
            homepage=row["homepage"],
            language=row["language"],
            license=row["license"],
            url=row["url"],
            topics=normalize_topics(row["topics"]),
            stars=row["stars"] or 0,
            forks=row["forks"] or 0,
            issues=row["issues"] or 0,
            created=row["created"],
            updated=row["updated"],
            pushed=row["pushed"],
            starred_at=row["starred_at"],
            archived=bool(row["archived"]),
            fork=bool(row["fork"]),
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, StarRecord):
            return NotImplemented
        mine = self.to_dict()
        theirs = other.to_dict()
        mine["topics"] = sorted(set(self.topics))
        theirs["topics"] = sorted(set(other.topics))
        return mine == theirs


COLUMNS: tuple[str, ...] = tuple(f.name for f in fields(StarRecord))


def is_populated(value: Any) -> bool:
    if value is None or value is False:
        return False
    if isinstance(value, (str, list, tuple)):
        return len(value) > 0
    if isinstance(value, int):
        return value != 0
    return True


@dataclass
class ValidationResult:
    valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def validate(record: Mapping[str, Any] | StarRecord) -> ValidationResult:
    """Check a record against the canonical schema without modifying it.

    Structural defects (missing required fields, wrong types on identity
    fields, unknown source) are errors. Softer defects are warnings so a
    slightly odd record is still kept.
    """
    data = record.to_dict() if isinstance(record, StarRecord) else record
    errors: list[str] = []
    warnings: list[str] = []

    for name in REQUIRED_FIELDS:
        if name not in data or data[name] is None:
            errors.append(f"missing required field: {name}")

    if data.get("id") is not None and not _is_int(data["id"]):
        errors.append(f"id must be an integer, got {type(data['id']).__name__}")

    for name in ("owner", "name", "full_name"):
        value = data.get(name)
        if value is None:
            continue
        if not isinstance(value, str):
            errors.append(f"{name} must be a string, got {type(value).__name__}")
        elif not value.strip():
            errors.append(f"{name} must not be empty")

    source = data.get("source")
    if source is not None and source not in SOURCES:
        errors.append(f"source must be one of {', '.join(SOURCES)}, got {source!r}")

    for name in ("stars", "forks", "issues"):
        value = data.get(name)
        if value is None:
            continue
        if not _is_int(value):
            warnings.append(f"{name} should be an integer, got {type(value).__name__}")
        elif value < 0:
            warnings.append(f"{name} should not be negative")

    for name in ("archived", "fork"):
        value = data.get(name)
        if value is not None and not isinstance(value, bool):
            warnings.append(f"{name} should be a boolean, got {type(value).__name__}")

    for name in ("url", "homepage"):
        value = data.get(name)
        if value and not (
            isinstance(value, str) and value.startswith(("http://", "https://"))
        ):
            warnings.append(f"{name} should start with http:// or https://")

    topics = data.get("topics")
    if topics is not None and not isinstance(topics, list):
        warnings.append(f"topics should be a list, got {type(topics).__name__}")

    return ValidationResult(valid=not errors, errors=errors, warnings=warnings)


def ensure_valid(record: Mapping[str, Any] | StarRecord) -> ValidationResult:
    """Validate and raise ValidationError on structural defects."""
    result = validate(record)
    if not result.valid:
        raise ValidationError(result.errors)
    return result
