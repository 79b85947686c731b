"""Awesome-list source: pulls GitHub repositories out of free-form markdown."""

from __future__ import annotations

import asyncio
import logging
import re
from pathlib import Path
from typing import Any

from ..client import StarsClient
from ..errors import SourceFetchError
from ..models import StarRecord
from ..normalize import normalize, unique_by
from ..urls import parse_github_url, repo_url
from .base import FetchReport, RawCandidate

logger = logging.getLogger(__name__)

_REPO_PATH = r"github\.com/[A-Za-z0-9-]+/[A-Za-z0-9._-]+[^\s)\]>\"'`]*"

# [text](https://github.com/o/r) and [text](github.com/o/r)
LINK_WITH_SCHEME_RE = re.compile(r"\[(?P<text>[^\]]*)\]\((?P<url>https?://(?:www\.)?" + _REPO_PATH + r")\)")
LINK_NO_SCHEME_RE = re.compile(r"\[(?P<text>[^\]]*)\]\((?P<url>(?:www\.)?" + _REPO_PATH + r")\)")
# bare https://github.com/o/r and bare github.com/o/r
BARE_WITH_SCHEME_RE = re.compile(r"(?P<url>https?://(?:www\.)?" + _REPO_PATH + r")")
BARE_NO_SCHEME_RE = re.compile(r"(?<![/\w.])(?P<url>(?:www\.)?" + _REPO_PATH + r")")

DEFAULT_BATCH_SIZE = 10
DEFAULT_BATCH_DELAY = 1.0


def extract_links(text: str) -> list[tuple[str, str]]:
    """Return ``(url, link_text)`` pairs in document order.

    Bare URLs that sit inside an already-matched bracketed link are skipped
    so a link is only counted once.
    """
    found: list[tuple[int, str, str]] = []
    spans: list[tuple[int, int]] = []

    for pattern in (LINK_WITH_SCHEME_RE, LINK_NO_SCHEME_RE):
        for match in pattern.finditer(text):
            spans.append(match.span())
            found.append((match.start(), match.group("url"), match.group("text")))

    def inside_link(pos: int) -> bool:
        return any(start <= pos < end for start, end in spans)

    bare_spans: list[tuple[int, int]] = []
    for pattern in (BARE_WITH_SCHEME_RE, BARE_NO_SCHEME_RE):
        for match in pattern.finditer(text):
            start, end = match.span()
            if inside_link(start):
                continue
            if any(s <= start < e for s, e in bare_spans):
                continue
            bare_spans.append((start, end))
            found.append((start, match.group("url").rstrip(".,;:!?"), ""))

    found.sort(key=lambda item: item[0])
    return [(url, link_text) for _, url, link_text in found]


def is_descriptive(link_text: str, owner: str, name: str) -> bool:
    """False for empty link text or text that just repeats the repository."""
    if not link_text:
        return False
    lowered = link_text.lower()
    if lowered in (f"{owner}/{name}".lower(), name.lower()):
        return False
    return parse_github_url(link_text) != (owner, name)


class AwesomeListAdapter:
    name = "awesome"

    def __init__(
        self,
        config: dict[str, Any] | None = None,
        client: StarsClient | None = None,
    ):
        cfg = config or {}
        self.client = client
        self.path: str = cfg.get("path") or ""
        self.repo: str = cfg.get("repo") or ""
        self.enrich: bool = bool(cfg.get("enrich", False))
        self.batch_size: int = max(1, int(cfg.get("batch_size", DEFAULT_BATCH_SIZE)))
        self.batch_delay: float = float(cfg.get("batch_delay", DEFAULT_BATCH_DELAY))
        self.report = FetchReport()

    async def _read_text(self, path: str | None, repo: str | None) -> str:
        if path:
            try:
                return Path(path).expanduser().read_text(encoding="utf-8")
            except OSError as e:
                raise SourceFetchError(self.name, f"could not read {path}: {e}") from e
        if repo:
            if self.client is None:
                raise SourceFetchError(self.name, "no GitHub client configured")
            return await self.client.get_readme(repo)
        raise SourceFetchError(self.name, "no markdown path, text or repo given")

    async def fetch(
        self,
        path: str | None = None,
        text: str | None = None,
        repo: str | None = None,
        enrich: bool | None = None,
    ) -> list[RawCandidate]:
        self.report = FetchReport()
        if text is None:
            text = await self._read_text(path or self.path, repo or self.repo)

        links = unique_by(extract_links(text), lambda link: link[0].rstrip("/").lower())

        candidates: list[RawCandidate] = []
        for url, link_text in links:
            parsed = parse_github_url(url)
            if parsed is None:
                continue
            owner, name = parsed
            full_name = f"{owner}/{name}"
            data: dict[str, Any] = {
                "owner": owner,
                "name": name,
                "full_name": full_name,
                "url": repo_url(owner, name),
            }
            link_text = link_text.strip()
            if is_descriptive(link_text, owner, name):
                data["description"] = link_text
            candidates.append(
                RawCandidate(source=self.name, source_id=full_name, url=data["url"], data=data)
            )

        candidates = unique_by(candidates, lambda c: c.source_id.lower())

        if enrich if enrich is not None else self.enrich:
            candidates = await self.enrich_candidates(candidates)

        self.report.fetched = len(candidates)
        logger.info("awesome: %d repositories from %d links", len(candidates), len(links))
        return candidates

    async def enrich_candidates(self, candidates: list[RawCandidate]) -> list[RawCandidate]:
        """Replace candidates with full repository data, one request at a time.

        Requests go out in batches of ``batch_size`` with ``batch_delay``
        seconds between batches. A failed lookup keeps the original candidate.
        """
        if self.client is None:
            logger.warning("awesome: enrichment requested without a client, skipping")
            return candidates

        enriched: list[RawCandidate] = []
        failed = 0
        for start in range(0, len(candidates), self.batch_size):
            if start and self.batch_delay > 0:
                await asyncio.sleep(self.batch_delay)
            for candidate in candidates[start:start + self.batch_size]:
                try:
                    repo = await self.client.get_repo(candidate.source_id)
                except SourceFetchError as e:
                    logger.debug("awesome: enrichment failed for %s: %s", candidate.source_id, e)
                    failed += 1
                    enriched.append(candidate)
                    continue
                data = dict(repo)
                if not data.get("description") and candidate.data.get("description"):
                    data["description"] = candidate.data["description"]
                enriched.append(
                    RawCandidate(
                        source=self.name,
                        source_id=candidate.source_id,
                        url=data.get("html_url") or candidate.url,
                        data=data,
                    )
                )
        if failed:
            logger.info("awesome: %d of %d enrichments failed", failed, len(candidates))
        return enriched

    def normalize(self, raw: RawCandidate, synced_at: str) -> StarRecord:
        return normalize(raw.data, self.name, synced_at=synced_at)
