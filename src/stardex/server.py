"""stardex MCP server: exposes sync, query, backup and migration tools."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from typing import Any

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool

from .config import Paths, get_sync_config, load_config
from .db import StarStore
from .errors import StardexError
from .query import FilterOptions, GroupKey, Query, SortKey, group_records
from .sync import ADAPTER_CLASSES, SYNC_MODES, Syncer, build_client

logger = logging.getLogger(__name__)


def _filter_options(args: dict, config: dict) -> FilterOptions:
    options = FilterOptions.from_config(config)
    if args.get("no_filters"):
        return FilterOptions.none()
    for flag in ("exclude_archived", "exclude_stale", "exclude_languages", "exclude_forks"):
        if flag in args:
            setattr(options, flag, bool(args[flag]))
    if "stale_days" in args:
        options.stale_days = int(args["stale_days"])
    return options


def create_server(config: dict | None = None) -> tuple[Server, dict]:
    """Create and configure the MCP server with all tools."""
    if config is None:
        config = load_config()

    server = Server("stardex")

    paths = Paths.from_config(config)
    store = StarStore(paths)
    ctx: dict[str, Any] = {"store": store, "config": config, "paths": paths}

    @server.list_tools()
    async def list_tools() -> list[Tool]:
        return [
            Tool(
                name="stardex_sync",
                description="Sync starred/bookmarked repositories from one source, or all enabled sources.",
                inputSchema={
                    "type": "object",
                    "properties": {
                        "source": {
                            "type": "string",
                            "enum": list(ADAPTER_CLASSES),
                            "description": "Sync only this source. Omit for all enabled sources.",
                        },
                        "mode": {
                            "type": "string",
                            "enum": list(SYNC_MODES),
                            "default": "refresh",
                        },
                    },
                },
            ),
            Tool(
                name="stardex_list",
                description="List stored repositories after the default filters (archived, stale, language, forks).",
                inputSchema={
                    "type": "object",
                    "properties": {
                        "source": {"type": "string", "enum": list(ADAPTER_CLASSES)},
                        "sort": {"type": "string", "enum": [k.value for k in SortKey]},
                        "reverse": {"type": "boolean", "default": False},
                        "group_by": {"type": "string", "enum": [k.value for k in GroupKey]},
                        "limit": {"type": "integer", "default": 50},
                        "no_filters": {"type": "boolean", "default": False},
                        "exclude_archived": {"type": "boolean"},
                        "exclude_stale": {"type": "boolean"},
                        "stale_days": {"type": "integer"},
                        "exclude_languages": {"type": "boolean"},
                        "exclude_forks": {"type": "boolean"},
                    },
                },
            ),
            Tool(
                name="stardex_stats",
                description="Store health: totals by source and language, last sync per source, backup count.",
                inputSchema={"type": "object", "properties": {}},
            ),
            Tool(
                name="stardex_backup",
                description="Take a timestamped backup of the store.",
                inputSchema={"type": "object", "properties": {}},
            ),
            Tool(
                name="stardex_migrate",
                description="Import the legacy store once. A no-op when already migrated.",
                inputSchema={"type": "object", "properties": {}},
            ),
        ]

    @server.call_tool()
    async def call_tool(name: str, arguments: dict) -> list[TextContent]:
        try:
            if name == "stardex_sync":
                result = await _handle_sync(arguments)
            elif name == "stardex_list":
                result = await _handle_list(arguments)
            elif name == "stardex_stats":
                result = store.get_stats()
            elif name == "stardex_backup":
                result = {"backup": str(store.backup())}
            elif name == "stardex_migrate":
                result = {"migrated": store.migrate_legacy(raise_on_skip=True)}
            else:
                result = {"error": f"Unknown tool: {name}"}
        except StardexError as e:
            logger.error("Tool %s failed: %s", name, e)
            result = e.to_dict()
        except Exception as e:
            logger.error("Tool %s failed: %s", name, e)
            result = {"error": str(e)}

        return [TextContent(type="text", text=json.dumps(result, indent=2, default=str))]

    # ── Tool handlers ───────────────────────────────────────────────

    async def _handle_sync(args: dict) -> dict:
        source = args.get("source")
        mode = args.get("mode") or get_sync_config(config).get("default_mode") or "refresh"
        async with build_client(config) as client:
            syncer = Syncer(store, config, client)
            if source:
                return await syncer.sync_source(source, mode=mode)
            return await syncer.sync_all()

    async def _handle_list(args: dict) -> dict:
        query = Query(
            options=_filter_options(args, config),
            source=args.get("source"),
            sort=SortKey.parse(args["sort"]) if args.get("sort") else None,
            reverse=bool(args.get("reverse", False)),
            limit=args.get("limit", 50),
        )
        records = query.run(store)
        if args.get("group_by"):
            groups = group_records(records, args["group_by"])
            return {
                "count": len(records),
                "groups": {k: [r.full_name for r in v] for k, v in groups.items()},
            }
        return {
            "count": len(records),
            "repositories": [
                {
                    "full_name": r.full_name,
                    "description": r.description,
                    "language": r.language,
                    "stars": r.stars,
                    "pushed": r.pushed,
                    "source": r.source,
                    "url": r.url,
                }
                for r in records
            ],
        }

    return server, ctx


async def run_server() -> None:
    """Run the MCP server on stdio."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        stream=sys.stderr,
    )

    server, ctx = create_server()

    async with stdio_server() as (read_stream, write_stream):
        await server.run(read_stream, write_stream, server.create_initialization_options())

    ctx["store"].close()


def main() -> None:
    """Entry point for the stardex-mcp command."""
    asyncio.run(run_server())
