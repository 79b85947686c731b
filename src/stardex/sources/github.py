"""GitHub source adapter: walks the starred-repositories listing page by page."""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Any

from ..client import MAX_PER_PAGE, StarsClient
from ..errors import SourceFetchError
from ..models import StarRecord
from ..normalize import normalize
from .base import FetchReport, RawCandidate

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PageCursor:
    """Pagination state: next page to request, items seen, finished flag."""

    page: int = 1
    total: int = 0
    done: bool = False


def advance_cursor(cursor: PageCursor, received: int, per_page: int) -> PageCursor:
    """Step the cursor after a page of ``received`` items.

    An empty page or a short page (fewer than ``per_page`` items) is the
    last one, so no trailing request is needed to discover the end.
    """
    if cursor.done:
        return cursor
    return PageCursor(
        page=cursor.page + 1,
        total=cursor.total + received,
        done=received == 0 or received < per_page,
    )


def clamp_per_page(per_page: Any) -> int:
    try:
        value = int(per_page)
    except (TypeError, ValueError):
        return MAX_PER_PAGE
    return max(1, min(value, MAX_PER_PAGE))


class GitHubAdapter:
    name = "github"

    def __init__(
        self,
        config: dict[str, Any] | None = None,
        client: StarsClient | None = None,
    ):
        cfg = config or {}
        self.client = client
        self.user: str | None = cfg.get("user") or None
        self.per_page: int = clamp_per_page(cfg.get("per_page", MAX_PER_PAGE))
        self.max_pages: int | None = cfg.get("max_pages") or None
        self.report = FetchReport()

    async def fetch(
        self,
        user: str | None = None,
        per_page: int | None = None,
        max_pages: int | None = None,
    ) -> list[RawCandidate]:
        """Fetch every starred repository for ``user`` (or the token owner).

        A failure on the first page is raised. A failure on a later page
        ends the walk with what has been collected so far and marks the
        report as partial.
        """
        if self.client is None:
            raise SourceFetchError("github", "no GitHub client configured")

        user = user or self.user
        per_page = clamp_per_page(per_page or self.per_page)
        max_pages = max_pages or self.max_pages
        self.report = FetchReport()

        candidates: list[RawCandidate] = []
        cursor = PageCursor()
        while not cursor.done:
            try:
                items = await self.client.list_starred(user, cursor.page, per_page)
            except SourceFetchError as e:
                if cursor.page == 1:
                    raise
                logger.warning(
                    "GitHub page %d failed after %d records, keeping partial result: %s",
                    cursor.page, cursor.total, e,
                )
                self.report.partial = True
                self.report.error = str(e)
                break

            self.report.pages += 1
            for item in items:
                candidate = self._to_candidate(item)
                if candidate is None:
                    self.report.dropped += 1
                    continue
                candidates.append(candidate)

            logger.info("Fetched page %d: %d repos", cursor.page, len(items))
            cursor = advance_cursor(cursor, len(items), per_page)
            if max_pages and cursor.page > max_pages:
                cursor = replace(cursor, done=True)

        self.report.fetched = len(candidates)
        return candidates

    def _to_candidate(self, item: Any) -> RawCandidate | None:
        if not isinstance(item, dict):
            return None
        # star+json wraps the repository: {"starred_at": ..., "repo": {...}}
        repo = item.get("repo") if isinstance(item.get("repo"), dict) else item
        data = dict(repo)
        if item.get("starred_at"):
            data["starred_at"] = item["starred_at"]
        full_name = repo.get("full_name") or ""
        return RawCandidate(
            source=self.name,
            source_id=full_name,
            url=repo.get("html_url") or "",
            data=data,
        )

    def normalize(self, raw: RawCandidate, synced_at: str) -> StarRecord:
        return normalize(raw.data, self.name, synced_at=synced_at)
