"""Normalizer and deduplicator: map raw source data onto StarRecord."""

from __future__ import annotations

import json
import zlib
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Hashable, Iterable, Mapping, TypeVar

from .errors import ValidationError
from .models import INFORMATIONAL_FIELDS, SOURCES, StarRecord, is_populated

UNKNOWN_OWNER = "unknown"
TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%SZ"

T = TypeVar("T")


# ── Field helpers ───────────────────────────────────────────────────


def normalize_topics(value: Any) -> list[str]:
    """Coerce any topics input into a list of strings. Never raises."""
    if value is None:
        return []
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return []
        try:
            value = json.loads(text)
        except (json.JSONDecodeError, ValueError):
            return []
    if not isinstance(value, (list, tuple)):
        return []

    topics: list[str] = []
    for item in value:
        if isinstance(item, dict):
            item = item.get("name")
        if not isinstance(item, str):
            continue
        item = item.strip()
        if item and item not in topics:
            topics.append(item)
    return topics


def normalize_text(value: Any) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        value = str(value)
    value = value.strip()
    return value or None


def normalize_int(value: Any, default: int = 0) -> int:
    if value is None or isinstance(value, bool):
        return default
    try:
        number = int(value)
    except (TypeError, ValueError):
        return default
    return max(number, 0)


def normalize_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes")
    return bool(value)


def format_timestamp(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


def normalize_timestamp(value: Any) -> str | None:
    """Return an ISO-8601 UTC timestamp string, or None if unparseable."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return format_timestamp(value)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        if value < 0:
            return None
        try:
            return format_timestamp(datetime.fromtimestamp(value, tz=timezone.utc))
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            return format_timestamp(datetime.fromisoformat(text))
        except ValueError:
            return None
    return None


def synthesize_id(full_name: str) -> int:
    """Stable integer id for sources that do not assign one."""
    return zlib.crc32(full_name.lower().encode("utf-8"))


def _maybe_json_object(value: Any) -> Any:
    """Decode nested objects that were stored as JSON text."""
    if isinstance(value, str) and value.lstrip().startswith("{"):
        try:
            return json.loads(value)
        except (json.JSONDecodeError, ValueError):
            return None
    return value


def extract_owner(raw: Mapping[str, Any]) -> str | None:
    owner = _maybe_json_object(raw.get("owner"))
    if isinstance(owner, Mapping):
        owner = owner.get("login") or owner.get("name")
    owner = normalize_text(owner)
    if owner:
        return owner
    full_name = normalize_text(raw.get("full_name"))
    if full_name and "/" in full_name:
        return normalize_text(full_name.split("/", 1)[0])
    return None


def extract_license(raw: Mapping[str, Any]) -> str | None:
    value = _maybe_json_object(raw.get("license"))
    if isinstance(value, Mapping):
        name = normalize_text(value.get("name"))
        if name and name != "Other":
            return name
        return normalize_text(value.get("spdx_id")) or name
    return normalize_text(value)


def sync_timestamp(previous: str | None = None) -> str:
    """Timestamp for one sync run, strictly after ``previous``."""
    now = datetime.now(timezone.utc).replace(microsecond=0)
    if previous:
        last = normalize_timestamp(previous)
        if last:
            last_dt = datetime.strptime(last, TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)
            if now <= last_dt:
                now = last_dt + timedelta(seconds=1)
    return format_timestamp(now)


# ── Normalizer ──────────────────────────────────────────────────────


def normalize(
    raw: Mapping[str, Any], source: str, *, synced_at: str | None = None
) -> StarRecord:
    """Build a StarRecord from raw source data, field by field.

    Raises ValidationError for an unknown source or when neither a name nor
    a full_name can be recovered.
    """
    if source not in SOURCES:
        raise ValidationError([f"source must be one of {', '.join(SOURCES)}, got {source!r}"])

    full_name = normalize_text(raw.get("full_name"))
    name = normalize_text(raw.get("name"))
    if not name and full_name and "/" in full_name:
        name = normalize_text(full_name.split("/", 1)[1])
    if not name:
        raise ValidationError(["missing required field: name"])

    owner = extract_owner(raw) or UNKNOWN_OWNER
    if not full_name:
        full_name = f"{owner}/{name}"

    raw_id = raw.get("id")
    if isinstance(raw_id, bool):
        raw_id = None
    try:
        record_id = int(raw_id) if raw_id is not None else synthesize_id(full_name)
    except (TypeError, ValueError):
        record_id = synthesize_id(full_name)

    return StarRecord(
        id=record_id,
        owner=owner,
        name=name,
        full_name=full_name,
        source=source,
        synced_at=normalize_timestamp(synced_at) or sync_timestamp(),
        description=normalize_text(raw.get("description")),
        homepage=normalize_text(raw.get("homepage")),
        language=normalize_text(raw.get("language")),
        license=extract_license(raw),
        url=normalize_text(raw.get("html_url") or raw.get("url")),
        topics=normalize_topics(raw.get("topics")),
        stars=normalize_int(raw.get("stargazers_count", raw.get("stars"))),
        forks=normalize_int(raw.get("forks_count", raw.get("forks"))),
        issues=normalize_int(raw.get("open_issues_count", raw.get("issues"))),
        created=normalize_timestamp(raw.get("created_at", raw.get("created"))),
        updated=normalize_timestamp(raw.get("updated_at", raw.get("updated"))),
        pushed=normalize_timestamp(raw.get("pushed_at", raw.get("pushed"))),
        starred_at=normalize_timestamp(raw.get("starred_at")),
        archived=normalize_bool(raw.get("archived", False)),
        fork=normalize_bool(raw.get("fork", False)),
    )


# ── Deduplicator ────────────────────────────────────────────────────


def _rank(record: StarRecord) -> tuple[int, str]:
    return record.populated_count(), record.synced_at or ""


def merge(first: StarRecord, second: StarRecord) -> StarRecord:
    """Merge two records for the same repository.

    The record with more populated fields wins; on a tie the later
    ``synced_at`` wins, then ``first``. Empty fields of the winner are
    filled from the other record.
    """
    if _rank(second) > _rank(first):
        winner, loser = second, first
    else:
        winner, loser = first, second

    merged = winner.to_dict()
    for name in INFORMATIONAL_FIELDS:
        if not is_populated(merged[name]) and is_populated(getattr(loser, name)):
            value = getattr(loser, name)
            merged[name] = list(value) if isinstance(value, list) else value
    if merged["owner"] == UNKNOWN_OWNER and loser.owner != UNKNOWN_OWNER:
        merged["owner"] = loser.owner
    return StarRecord(**merged)


def deduplicate(records: Iterable[StarRecord]) -> list[StarRecord]:
    """Collapse records sharing a full_name. First-seen order is kept."""
    merged: dict[str, StarRecord] = {}
    for record in records:
        existing = merged.get(record.key)
        merged[record.key] = merge(existing, record) if existing else record
    return list(merged.values())


def unique_by(items: Iterable[T], key: Callable[[T], Hashable]) -> list[T]:
    """Keep the first item for each key."""
    seen: set = set()
    result: list[T] = []
    for item in items:
        k = key(item)
        if k in seen:
            continue
        seen.add(k)
        result.append(item)
    return result
