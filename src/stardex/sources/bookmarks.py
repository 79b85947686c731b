"""Browser bookmark sources: Chrome ``Bookmarks`` JSON and Firefox backups/places.sqlite."""

from __future__ import annotations

import json
import logging
import shutil
import sqlite3
import tempfile
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator

from ..errors import SourceFetchError
from ..models import StarRecord
from ..normalize import format_timestamp, normalize, unique_by
from ..urls import parse_github_url, repo_url
from .base import FetchReport, RawCandidate

logger = logging.getLogger(__name__)

# Chrome stores times as microseconds since 1601-01-01 UTC (the Windows
# FILETIME epoch); 11644473600 seconds separate it from the Unix epoch.
WEBKIT_EPOCH_OFFSET_US = 11_644_473_600_000_000

# Upper bound for sane timestamps (year 3000), in Unix microseconds.
_MAX_UNIX_US = 32_503_680_000_000_000


@dataclass
class Bookmark:
    url: str
    title: str
    path: tuple[str, ...]
    added: Any = None


def webkit_to_timestamp(value: Any) -> str | None:
    """Convert Chrome microseconds-since-1601 to ISO-8601 UTC, or None."""
    try:
        micros = int(value)
    except (TypeError, ValueError, OverflowError):
        return None
    return unix_micros_to_timestamp(micros - WEBKIT_EPOCH_OFFSET_US)


def unix_micros_to_timestamp(value: Any) -> str | None:
    """Convert microseconds since the Unix epoch (Firefox PRTime), or None."""
    try:
        micros = int(value)
    except (TypeError, ValueError, OverflowError):
        return None
    if micros <= 0 or micros > _MAX_UNIX_US:
        return None
    try:
        dt = datetime.fromtimestamp(micros / 1_000_000, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None
    return format_timestamp(dt)


def _node_name(node: dict) -> str:
    for key in ("name", "title", "folder"):
        value = node.get(key)
        if isinstance(value, str) and value:
            return value
    return ""


def walk_tree(node: Any, path: tuple[str, ...] = ()) -> Iterator[Bookmark]:
    """Depth-first walk yielding bookmarks with their folder path.

    Folders are nodes with ``children``; bookmarks are nodes carrying a
    ``url`` (Chrome, generic) or ``uri`` (Firefox).
    """
    if isinstance(node, list):
        for child in node:
            yield from walk_tree(child, path)
        return
    if not isinstance(node, dict):
        return

    url = node.get("url") or node.get("uri")
    if isinstance(url, str) and "children" not in node:
        yield Bookmark(
            url=url,
            title=_node_name(node),
            path=path,
            added=node.get("date_added", node.get("dateAdded")),
        )
        return

    children = node.get("children")
    if isinstance(children, list):
        name = _node_name(node)
        child_path = path + (name,) if name else path
        for child in children:
            yield from walk_tree(child, child_path)


def in_folder(bookmark: Bookmark, folder: str | None) -> bool:
    """True if some ancestor folder name contains ``folder``."""
    if not folder:
        return True
    needle = folder.lower()
    return any(needle in segment.lower() for segment in bookmark.path)


class _BookmarkTreeAdapter:
    """Shared extraction for tree-shaped bookmark stores."""

    name = ""

    def __init__(self, config: dict[str, Any] | None = None, client: Any = None):
        cfg = config or {}
        self.path: str = cfg.get("path") or ""
        self.folder: str = cfg.get("folder") or ""
        self.report = FetchReport()

    def convert_time(self, value: Any) -> str | None:
        raise NotImplementedError

    def load_tree(self, path: Path) -> Any:
        try:
            with open(path, encoding="utf-8") as f:
                return json.load(f)
        except FileNotFoundError as e:
            raise SourceFetchError(self.name, f"bookmarks file not found: {path}") from e
        except (OSError, json.JSONDecodeError) as e:
            raise SourceFetchError(self.name, f"could not read {path}: {e}") from e

    def roots(self, tree: Any) -> Any:
        return tree

    async def fetch(
        self,
        path: str | None = None,
        folder: str | None = None,
        tree: Any = None,
    ) -> list[RawCandidate]:
        """Extract GitHub repositories from a bookmark tree.

        Pass ``tree`` to use an already-parsed tree instead of reading
        ``path``.
        """
        folder = folder if folder is not None else self.folder
        self.report = FetchReport()
        if tree is None:
            path = path or self.path
            if not path:
                raise SourceFetchError(self.name, "no bookmarks path configured")
            tree = self.load_tree(Path(path).expanduser())

        return self.extract(tree, folder)

    def extract(self, tree: Any, folder: str | None = None) -> list[RawCandidate]:
        candidates: list[RawCandidate] = []
        for bookmark in walk_tree(self.roots(tree)):
            if not in_folder(bookmark, folder):
                continue
            parsed = parse_github_url(bookmark.url)
            if parsed is None:
                continue
            owner, repo = parsed
            full_name = f"{owner}/{repo}"
            data: dict[str, Any] = {
                "owner": owner,
                "name": repo,
                "full_name": full_name,
                "url": repo_url(owner, repo),
                "starred_at": self.convert_time(bookmark.added),
            }
            title = bookmark.title.strip()
            if title and title.lower() not in (full_name.lower(), repo.lower()):
                data["description"] = title
            candidates.append(
                RawCandidate(source=self.name, source_id=full_name, url=data["url"], data=data)
            )

        unique = unique_by(candidates, lambda c: c.source_id.lower())
        self.report.fetched = len(unique)
        logger.info(
            "%s: %d repositories (%d duplicates skipped)",
            self.name, len(unique), len(candidates) - len(unique),
        )
        return unique

    def normalize(self, raw: RawCandidate, synced_at: str) -> StarRecord:
        return normalize(raw.data, self.name, synced_at=synced_at)


class ChromeBookmarksAdapter(_BookmarkTreeAdapter):
    name = "chrome"

    def convert_time(self, value: Any) -> str | None:
        return webkit_to_timestamp(value)

    def roots(self, tree: Any) -> Any:
        if isinstance(tree, dict) and isinstance(tree.get("roots"), dict):
            return list(tree["roots"].values())
        return tree


class FirefoxBookmarksAdapter(_BookmarkTreeAdapter):
    """Reads a Firefox JSON bookmark backup or a profile's places.sqlite."""

    name = "firefox"

    def convert_time(self, value: Any) -> str | None:
        return unix_micros_to_timestamp(value)

    def load_tree(self, path: Path) -> Any:
        if path.suffix in (".sqlite", ".db"):
            return self.load_places(path)
        return super().load_tree(path)

    def load_places(self, path: Path) -> dict:
        """Rebuild the bookmark tree from places.sqlite.

        Firefox keeps the database locked while running, so a copy is read.
        """
        if not path.exists():
            raise SourceFetchError(self.name, f"places database not found: {path}")

        with tempfile.TemporaryDirectory() as tmpdir:
            copy = Path(tmpdir) / "places.sqlite"
            shutil.copy2(path, copy)
            try:
                conn = sqlite3.connect(str(copy))
                try:
                    rows = conn.execute(
                        """SELECT b.id, b.type, b.parent, b.title, b.dateAdded, p.url
                           FROM moz_bookmarks b
                           LEFT JOIN moz_places p ON p.id = b.fk
                           ORDER BY b.parent, b.position"""
                    ).fetchall()
                finally:
                    conn.close()
            except sqlite3.Error as e:
                raise SourceFetchError(self.name, f"could not read {path}: {e}") from e

        return build_places_tree(rows)


def build_places_tree(rows: list[tuple]) -> dict:
    """Turn ``(id, type, parent, title, dateAdded, url)`` rows into a tree.

    Type 1 is a bookmark, type 2 a folder. The root has parent 0.
    """
    nodes: dict[int, dict] = {}
    for node_id, node_type, _parent, title, added, url in rows:
        if node_type == 2:
            nodes[node_id] = {"title": title or "", "children": []}
        elif node_type == 1 and url:
            nodes[node_id] = {"title": title or "", "uri": url, "dateAdded": added}

    root: dict = {"title": "", "children": []}
    for node_id, node_type, parent, *_ in rows:
        node = nodes.get(node_id)
        if node is None:
            continue
        container = nodes.get(parent, root) if parent else root
        if "children" not in container:
            container = root
        container["children"].append(node)
    return root
