"""Sync orchestrator: drives source adapters into the star store."""

from __future__ import annotations

import argparse
import asyncio
import importlib
import json
import logging
import sys
from typing import Any

from .client import GitHubClient, StarsClient
from .config import (
    Paths,
    get_github_token,
    get_source_config,
    get_sync_config,
    load_config,
)
from .db import StarStore
from .errors import SourceFetchError, StardexError, StorageError, ValidationError
from .normalize import sync_timestamp
from .query import FilterOptions, Query, SortKey
from .sources.base import fetch_records

logger = logging.getLogger(__name__)

# Map source names to their adapter classes
ADAPTER_CLASSES = {
    "github": ("stardex.sources.github", "GitHubAdapter"),
    "firefox": ("stardex.sources.bookmarks", "FirefoxBookmarksAdapter"),
    "chrome": ("stardex.sources.bookmarks", "ChromeBookmarksAdapter"),
    "awesome": ("stardex.sources.markdown", "AwesomeListAdapter"),
    "manual": ("stardex.sources.manual", "ManualAdapter"),
}

SYNC_ORDER = ("github", "firefox", "chrome", "awesome", "manual")
SYNC_MODES = ("refresh", "replace", "append")
DEFAULT_BACKUP_THRESHOLD = 100


class Syncer:
    """Runs adapters and writes their records to the store."""

    def __init__(
        self,
        store: StarStore,
        config: dict[str, Any],
        client: StarsClient | None = None,
    ):
        self.store = store
        self.config = config
        self.client = client
        self._sync_cfg = get_sync_config(config)
        self.backup_threshold: int = int(
            self._sync_cfg.get("backup_threshold", DEFAULT_BACKUP_THRESHOLD)
        )
        self._last_stamp: str | None = None

    def load_adapter(self, name: str) -> Any:
        if name not in ADAPTER_CLASSES:
            raise ValueError(
                f"Unknown source: {name!r} (expected one of {', '.join(ADAPTER_CLASSES)})"
            )
        module_path, class_name = ADAPTER_CLASSES[name]
        mod = importlib.import_module(module_path)
        adapter_cls = getattr(mod, class_name)
        return adapter_cls(config=get_source_config(self.config, name), client=self.client)

    def _next_stamp(self) -> str:
        if self._last_stamp is None:
            last = self.store.get_last_sync()
            self._last_stamp = last["synced_at"] if last else None
        self._last_stamp = sync_timestamp(self._last_stamp)
        return self._last_stamp

    def _backup_before_write(self) -> str | None:
        """Back up a large store before a destructive sync. Failure only warns."""
        try:
            count = self.store.count()
            if count <= self.backup_threshold:
                return None
            path = self.store.backup()
            logger.info("Backed up %d records before sync: %s", count, path)
            return str(path)
        except StorageError as e:
            logger.warning("Pre-sync backup failed, continuing: %s", e)
            return None

    async def sync_source(
        self, name: str, mode: str = "refresh", **params: Any
    ) -> dict[str, Any]:
        """Fetch one source and write it with ``mode``.

        ``refresh`` swaps only this source's rows, ``replace`` swaps the
        whole store, ``append`` merges into what is there. A partial fetch
        is always merged.
        """
        if mode not in SYNC_MODES:
            raise ValueError(f"Unknown sync mode: {mode!r} (expected one of {SYNC_MODES})")

        adapter = self.load_adapter(name)
        synced_at = self._next_stamp()
        logger.info("Syncing %s (%s)", name, mode)

        records = await fetch_records(adapter, synced_at, **params)
        report = adapter.report
        logger.info(
            "%s returned %d records (%d dropped%s)",
            name, len(records), report.dropped, ", partial" if report.partial else "",
        )

        write_mode = mode
        if report.partial and mode in ("refresh", "replace"):
            logger.warning(
                "%s fetch was partial, merging instead of %s so unfetched rows survive",
                name, mode,
            )
            write_mode = "append"

        backup = None
        if write_mode in ("refresh", "replace"):
            backup = self._backup_before_write()

        if write_mode == "refresh":
            stored = self.store.replace_source(name, records)
        else:
            stored = self.store.store(records, mode=write_mode)

        self.store.log_sync(
            name, write_mode, synced_at,
            fetched=report.fetched,
            stored=stored,
            dropped=report.dropped,
            partial=report.partial,
        )
        return {
            "source": name,
            "mode": write_mode,
            "fetched": report.fetched,
            "stored": stored,
            "dropped": report.dropped,
            "partial": report.partial,
            "backup": backup,
        }

    def enabled_sources(self) -> list[str]:
        order = self._sync_cfg.get("order") or SYNC_ORDER
        enabled = []
        for name in order:
            if name not in ADAPTER_CLASSES:
                logger.warning("Ignoring unknown source in sync order: %s", name)
                continue
            if not get_source_config(self.config, name).get("enabled", False):
                logger.info("Source %s disabled, skipping", name)
                continue
            enabled.append(name)
        return enabled

    async def sync_all(self, sources: list[str] | None = None) -> dict[str, Any]:
        """Refresh each source in turn.

        A source that fails to fetch or validate is recorded and skipped.
        Storage failures propagate.
        """
        names = sources if sources is not None else self.enabled_sources()
        results: dict[str, Any] = {"sources": {}, "total_stored": 0, "failed": []}

        for name in names:
            try:
                summary = await self.sync_source(name, mode="refresh")
                results["sources"][name] = summary
                results["total_stored"] += summary["stored"]
            except StorageError:
                raise
            except (SourceFetchError, ValidationError, ValueError) as e:
                logger.error("Error syncing %s: %s", name, e)
                results["sources"][name] = {"error": str(e)}
                results["failed"].append(name)

        return results


def build_client(config: dict) -> GitHubClient:
    return GitHubClient(
        get_github_token(),
        cache=bool(get_source_config(config, "github").get("cache", False)),
    )


async def run_sync(
    config: dict,
    paths: Paths,
    source: str | None = None,
    mode: str = "refresh",
    **params: Any,
) -> dict:
    """Run one source, or every enabled source, and close everything after."""
    store = StarStore(paths)
    store.migrate_legacy()
    async with build_client(config) as client:
        syncer = Syncer(store, config, client)
        try:
            if source:
                return await syncer.sync_source(source, mode=mode, **params)
            return await syncer.sync_all()
        finally:
            store.close()


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="stardex", description=__doc__)
    parser.add_argument("--config", help="Path to a config.yaml override")
    parser.add_argument("-v", "--verbose", action="store_true")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init", help="Create the data directory and empty store")

    p_sync = sub.add_parser("sync", help="Sync one source")
    p_sync.add_argument("source", choices=list(ADAPTER_CLASSES))
    p_sync.add_argument("--mode", choices=SYNC_MODES, help="Write mode (default: sync.default_mode)")
    p_sync.add_argument("--user", help="GitHub user (default: token owner)")
    p_sync.add_argument("--path", help="Bookmarks or markdown file")
    p_sync.add_argument("--folder", help="Only bookmarks under this folder")
    p_sync.add_argument("--repo", help="owner/name of an awesome list")
    p_sync.add_argument("--enrich", action="store_true", help="Look up each awesome-list entry")
    p_sync.add_argument("repos", nargs="*", help="Repositories for the manual source")

    sub.add_parser("sync-all", help="Refresh every enabled source")

    p_list = sub.add_parser("list", help="List stored repositories")
    p_list.add_argument("--source", choices=list(ADAPTER_CLASSES))
    p_list.add_argument("--sort", choices=[k.value for k in SortKey])
    p_list.add_argument("--reverse", action="store_true")
    p_list.add_argument("--limit", type=int)
    p_list.add_argument("--all", action="store_true", help="Disable the default filters")
    p_list.add_argument("--include-archived", action="store_true")
    p_list.add_argument("--include-stale", action="store_true")
    p_list.add_argument("--include-forks", action="store_true")
    p_list.add_argument("--any-language", action="store_true")

    sub.add_parser("stats", help="Show store statistics")
    sub.add_parser("backup", help="Back up the store")
    sub.add_parser("migrate", help="Import the legacy store")
    return parser


def _sync_mode(args: argparse.Namespace, config: dict) -> str:
    mode = args.mode or get_sync_config(config).get("default_mode") or "refresh"
    if mode not in SYNC_MODES:
        raise StardexError(
            f"Unknown sync mode: {mode!r}",
            hint=f"set sync.default_mode to one of {', '.join(SYNC_MODES)}",
        )
    return mode


def _sync_params(args: argparse.Namespace) -> dict[str, Any]:
    params: dict[str, Any] = {}
    if args.source == "github" and args.user:
        params["user"] = args.user
    if args.source in ("firefox", "chrome", "awesome") and args.path:
        params["path"] = args.path
    if args.source in ("firefox", "chrome") and args.folder:
        params["folder"] = args.folder
    if args.source == "awesome":
        if args.repo:
            params["repo"] = args.repo
        if args.enrich:
            params["enrich"] = True
    if args.source == "manual" and args.repos:
        params["repos"] = args.repos
    return params


def _filter_options(args: argparse.Namespace, config: dict) -> FilterOptions:
    if args.all:
        return FilterOptions.none()
    options = FilterOptions.from_config(config)
    if args.include_archived:
        options.exclude_archived = False
    if args.include_stale:
        options.exclude_stale = False
    if args.include_forks:
        options.exclude_forks = False
    if args.any_language:
        options.exclude_languages = False
    return options


def run_command(args: argparse.Namespace, config: dict, paths: Paths) -> Any:
    if args.command in ("sync", "sync-all"):
        if args.command == "sync":
            mode = _sync_mode(args, config)
            return asyncio.run(
                run_sync(config, paths, args.source, mode, **_sync_params(args))
            )
        return asyncio.run(run_sync(config, paths))

    store = StarStore(paths)
    try:
        if args.command == "init":
            migrated = store.migrate_legacy()
            store.init()
            return {"db_path": str(paths.db_path), "migrated": migrated}
        if args.command == "list":
            query = Query(
                options=_filter_options(args, config),
                source=args.source,
                sort=SortKey.parse(args.sort) if args.sort else None,
                reverse=args.reverse,
                limit=args.limit,
            )
            return [r.to_dict() for r in query.run(store)]
        if args.command == "stats":
            return store.get_stats()
        if args.command == "backup":
            return {"backup": str(store.backup())}
        if args.command == "migrate":
            return {"migrated": store.migrate_legacy(raise_on_skip=True)}
    finally:
        store.close()
    raise ValueError(f"Unknown command: {args.command}")


def main(argv: list[str] | None = None) -> int:
    """CLI entry point."""
    args = _build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        stream=sys.stderr,
    )

    config = load_config(args.config)
    paths = Paths.from_config(config)
    try:
        result = run_command(args, config, paths)
    except StardexError as e:
        logger.error("%s", e.message)
        if e.hint:
            logger.error("Hint: %s", e.hint)
        return 1

    print(json.dumps(result, indent=2, default=str))
    return 0
