"""Filter/query layer over stored StarRecords."""

from __future__ import annotations

import enum
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Iterable

from .config import get_filter_config
from .models import StarRecord
from .normalize import TIMESTAMP_FORMAT

DEFAULT_STALE_DAYS = 365
DEFAULT_EXCLUDED_LANGUAGES: tuple[str, ...] = ("Python", "Jupyter Notebook", "PHP")


@dataclass
class FilterOptions:
    """Default exclusion rules. Each one can be switched off on its own."""

    exclude_archived: bool = True
    exclude_stale: bool = True
    stale_days: int = DEFAULT_STALE_DAYS
    exclude_languages: bool = True
    languages: tuple[str, ...] = DEFAULT_EXCLUDED_LANGUAGES
    exclude_forks: bool = True

    @classmethod
    def none(cls) -> FilterOptions:
        return cls(
            exclude_archived=False,
            exclude_stale=False,
            exclude_languages=False,
            exclude_forks=False,
        )

    @classmethod
    def from_config(cls, config: dict) -> FilterOptions:
        cfg = get_filter_config(config)
        return cls(
            exclude_archived=cfg.get("exclude_archived", True),
            exclude_stale=cfg.get("exclude_stale", True),
            stale_days=int(cfg.get("stale_days", DEFAULT_STALE_DAYS)),
            exclude_languages=cfg.get("exclude_languages", True),
            languages=tuple(cfg.get("languages", DEFAULT_EXCLUDED_LANGUAGES)),
            exclude_forks=cfg.get("exclude_forks", True),
        )


def _parse_ts(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.strptime(value, TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)
    except ValueError:
        return None


def is_archived(record: StarRecord) -> bool:
    return record.archived


def is_fork(record: StarRecord) -> bool:
    return record.fork


def is_stale(record: StarRecord, stale_days: int, now: datetime | None = None) -> bool:
    """Not pushed within ``stale_days``. Unknown push dates are not stale."""
    pushed = _parse_ts(record.pushed)
    if pushed is None:
        return False
    now = now or datetime.now(timezone.utc)
    return now - pushed > timedelta(days=stale_days)


def has_excluded_language(record: StarRecord, languages: Iterable[str]) -> bool:
    """Language is in the denylist. A missing language never matches."""
    if not record.language:
        return False
    return record.language.lower() in {lang.lower() for lang in languages}


def excluded_by(
    record: StarRecord, options: FilterOptions, now: datetime | None = None
) -> list[str]:
    """Names of the enabled filters that reject ``record``."""
    reasons = []
    if options.exclude_archived and is_archived(record):
        reasons.append("archived")
    if options.exclude_stale and is_stale(record, options.stale_days, now):
        reasons.append("stale")
    if options.exclude_languages and has_excluded_language(record, options.languages):
        reasons.append("language")
    if options.exclude_forks and is_fork(record):
        reasons.append("fork")
    return reasons


def apply_filters(
    records: Iterable[StarRecord],
    options: FilterOptions | None = None,
    now: datetime | None = None,
) -> list[StarRecord]:
    options = options or FilterOptions()
    now = now or datetime.now(timezone.utc)
    return [r for r in records if not excluded_by(r, options, now)]


# ── Sort / group keys ───────────────────────────────────────────────


class SortKey(str, enum.Enum):
    NAME = "name"
    STARS = "stars"
    FORKS = "forks"
    PUSHED = "pushed"
    UPDATED = "updated"
    CREATED = "created"
    STARRED = "starred"
    LANGUAGE = "language"

    @classmethod
    def parse(cls, value: str | SortKey) -> SortKey:
        try:
            return cls(value)
        except ValueError:
            raise ValueError(
                f"Unknown sort key: {value!r} (expected one of {', '.join(k.value for k in cls)})"
            ) from None


class GroupKey(str, enum.Enum):
    LANGUAGE = "language"
    OWNER = "owner"
    SOURCE = "source"
    LICENSE = "license"
    TOPIC = "topic"

    @classmethod
    def parse(cls, value: str | GroupKey) -> GroupKey:
        try:
            return cls(value)
        except ValueError:
            raise ValueError(
                f"Unknown group key: {value!r} (expected one of {', '.join(k.value for k in cls)})"
            ) from None


SORT_ACCESSORS: dict[SortKey, Callable[[StarRecord], Any]] = {
    SortKey.NAME: lambda r: r.full_name.lower(),
    SortKey.STARS: lambda r: r.stars,
    SortKey.FORKS: lambda r: r.forks,
    SortKey.PUSHED: lambda r: r.pushed or "",
    SortKey.UPDATED: lambda r: r.updated or "",
    SortKey.CREATED: lambda r: r.created or "",
    SortKey.STARRED: lambda r: r.starred_at or "",
    SortKey.LANGUAGE: lambda r: (r.language or "").lower(),
}

GROUP_ACCESSORS: dict[GroupKey, Callable[[StarRecord], list[str]]] = {
    GroupKey.LANGUAGE: lambda r: [r.language or "(none)"],
    GroupKey.OWNER: lambda r: [r.owner],
    GroupKey.SOURCE: lambda r: [r.source],
    GroupKey.LICENSE: lambda r: [r.license or "(none)"],
    GroupKey.TOPIC: lambda r: r.topics or ["(none)"],
}


def sort_records(
    records: Iterable[StarRecord], key: str | SortKey, reverse: bool = False
) -> list[StarRecord]:
    accessor = SORT_ACCESSORS[SortKey.parse(key)]
    return sorted(records, key=accessor, reverse=reverse)


def group_records(
    records: Iterable[StarRecord], key: str | GroupKey
) -> dict[str, list[StarRecord]]:
    """Bucket records by a key. A record with several topics lands in each."""
    accessor = GROUP_ACCESSORS[GroupKey.parse(key)]
    groups: dict[str, list[StarRecord]] = defaultdict(list)
    for record in records:
        for value in accessor(record):
            groups[value].append(record)
    return dict(sorted(groups.items(), key=lambda item: (-len(item[1]), item[0])))


@dataclass
class Query:
    """A load-filter-sort request against a store."""

    options: FilterOptions = field(default_factory=FilterOptions)
    source: str | None = None
    sort: SortKey | None = None
    reverse: bool = False
    limit: int | None = None

    def run(self, store: Any, now: datetime | None = None) -> list[StarRecord]:
        records = apply_filters(store.load(self.source), self.options, now)
        if self.sort is not None:
            records = sort_records(records, self.sort, self.reverse)
        if self.limit is not None:
            records = records[: self.limit]
        return records
