"""Base protocol and data classes for source adapters."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from ..errors import ValidationError
from ..models import StarRecord, validate

logger = logging.getLogger(__name__)


@dataclass
class RawCandidate:
    """A repository reference as found in a source, before normalization."""

    source: str
    source_id: str
    url: str = ""
    data: dict[str, Any] = field(default_factory=dict)


@dataclass
class FetchReport:
    """Diagnostics for the last fetch of an adapter."""

    fetched: int = 0
    dropped: int = 0
    pages: int = 0
    partial: bool = False
    error: str | None = None


@runtime_checkable
class SourceAdapter(Protocol):
    """Protocol for pluggable source adapters."""

    name: str
    report: FetchReport

    async def fetch(self, **params: Any) -> list[RawCandidate]:
        """Fetch candidates from the source.

        Invalid individual entries are dropped, never raised.
        """
        ...

    def normalize(self, raw: RawCandidate, synced_at: str) -> StarRecord:
        """Map one candidate onto the canonical schema."""
        ...


def collect(
    adapter: SourceAdapter, raws: list[RawCandidate], synced_at: str
) -> tuple[list[StarRecord], int]:
    """Normalize candidates one by one, dropping the ones that fail.

    Returns the records in input order and the number of dropped items.
    """
    records: list[StarRecord] = []
    dropped = 0
    for raw in raws:
        try:
            record = adapter.normalize(raw, synced_at)
        except (ValidationError, KeyError, TypeError, ValueError) as e:
            logger.debug("Dropping %s candidate %s: %s", adapter.name, raw.source_id, e)
            dropped += 1
            continue
        result = validate(record)
        if not result.valid:
            logger.debug(
                "Dropping %s candidate %s: %s",
                adapter.name, raw.source_id, "; ".join(result.errors),
            )
            dropped += 1
            continue
        for warning in result.warnings:
            logger.debug("%s candidate %s: %s", adapter.name, raw.source_id, warning)
        records.append(record)
    return records, dropped


async def fetch_records(
    adapter: SourceAdapter, synced_at: str, **params: Any
) -> list[StarRecord]:
    """Fetch and normalize in one step, updating ``adapter.report``."""
    raws = await adapter.fetch(**params)
    records, dropped = collect(adapter, raws, synced_at)
    adapter.report.dropped += dropped
    return records
