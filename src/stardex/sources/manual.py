"""Manual source: repositories listed by hand as URLs or owner/repo strings."""

from __future__ import annotations

import logging
from typing import Any

from ..models import StarRecord
from ..normalize import normalize, unique_by
from ..urls import parse_repo_ref, repo_url
from .base import FetchReport, RawCandidate

logger = logging.getLogger(__name__)


class ManualAdapter:
    name = "manual"

    def __init__(self, config: dict[str, Any] | None = None, client: Any = None):
        cfg = config or {}
        self.repos: list[str] = list(cfg.get("repos") or [])
        self.report = FetchReport()

    async def fetch(self, repos: list[str] | None = None) -> list[RawCandidate]:
        self.report = FetchReport()
        candidates: list[RawCandidate] = []
        for ref in repos if repos is not None else self.repos:
            parsed = parse_repo_ref(ref)
            if parsed is None:
                logger.warning("manual: not a repository reference: %s", ref)
                self.report.dropped += 1
                continue
            owner, name = parsed
            full_name = f"{owner}/{name}"
            candidates.append(
                RawCandidate(
                    source=self.name,
                    source_id=full_name,
                    url=repo_url(owner, name),
                    data={
                        "owner": owner,
                        "name": name,
                        "full_name": full_name,
                        "url": repo_url(owner, name),
                    },
                )
            )
        candidates = unique_by(candidates, lambda c: c.source_id.lower())
        self.report.fetched = len(candidates)
        return candidates

    def normalize(self, raw: RawCandidate, synced_at: str) -> StarRecord:
        return normalize(raw.data, self.name, synced_at=synced_at)
