"""Tests for source adapters."""

import asyncio
import json
import sqlite3
import tempfile
from pathlib import Path
from unittest.mock import patch

import pytest

from stardex.errors import SourceFetchError
from stardex.sources.base import FetchReport, RawCandidate, SourceAdapter, collect, fetch_records
from stardex.sources.bookmarks import (
    WEBKIT_EPOCH_OFFSET_US,
    ChromeBookmarksAdapter,
    FirefoxBookmarksAdapter,
    build_places_tree,
    unix_micros_to_timestamp,
    webkit_to_timestamp,
)
from stardex.sources.github import GitHubAdapter, PageCursor, advance_cursor, clamp_per_page
from stardex.sources.manual import ManualAdapter
from stardex.sources.markdown import AwesomeListAdapter, extract_links

SYNCED = "2026-01-01T00:00:00Z"


def repo(n: int) -> dict:
    return {
        "id": n,
        "name": f"repo{n}",
        "full_name": f"owner{n}/repo{n}",
        "owner": {"login": f"owner{n}"},
        "html_url": f"https://github.com/owner{n}/repo{n}",
        "stargazers_count": n,
        "license": None,
    }


class FakeClient:
    """In-memory StarsClient serving canned pages."""

    def __init__(self, pages=None, fail_on_page=None, repos=None, readme=""):
        self.pages = pages or []
        self.fail_on_page = fail_on_page
        self.repos = repos or {}
        self.readme = readme
        self.requests: list[tuple] = []

    async def list_starred(self, user, page, per_page):
        self.requests.append(("list_starred", user, page, per_page))
        if page == self.fail_on_page:
            raise SourceFetchError("github", "boom", status=502)
        if page > len(self.pages):
            return []
        return self.pages[page - 1]

    async def get_repo(self, full_name):
        self.requests.append(("get_repo", full_name))
        if full_name not in self.repos:
            raise SourceFetchError("github", f"{full_name} not found", status=404)
        return self.repos[full_name]

    async def get_readme(self, full_name):
        self.requests.append(("get_readme", full_name))
        return self.readme


def pages_of(sizes):
    pages, n = [], 0
    for size in sizes:
        pages.append([repo(n + i) for i in range(size)])
        n += size
    return pages


class TestRawCandidate:
    def test_defaults(self):
        c = RawCandidate(source="github", source_id="a/b")
        assert c.url == ""
        assert c.data == {}


class TestSourceAdapterProtocol:
    def test_adapters_satisfy_protocol(self):
        for adapter in (
            GitHubAdapter(),
            ChromeBookmarksAdapter(),
            FirefoxBookmarksAdapter(),
            AwesomeListAdapter(),
            ManualAdapter(),
        ):
            assert isinstance(adapter, SourceAdapter)

    def test_collect_drops_invalid(self):
        adapter = ManualAdapter()
        raws = [
            RawCandidate(source="manual", source_id="a/b", data={"full_name": "a/b"}),
            RawCandidate(source="manual", source_id="?", data={"description": "no name"}),
        ]
        records, dropped = collect(adapter, raws, SYNCED)
        assert [r.full_name for r in records] == ["a/b"]
        assert dropped == 1


class TestPageCursor:
    def test_full_page_continues(self):
        cursor = advance_cursor(PageCursor(), 100, 100)
        assert cursor == PageCursor(page=2, total=100, done=False)

    def test_short_page_ends(self):
        cursor = advance_cursor(PageCursor(page=3, total=200), 37, 100)
        assert cursor.done is True
        assert cursor.total == 237

    def test_empty_page_ends(self):
        assert advance_cursor(PageCursor(), 0, 100).done is True

    def test_done_cursor_does_not_move(self):
        done = PageCursor(page=4, total=237, done=True)
        assert advance_cursor(done, 100, 100) is done

    def test_clamp(self):
        assert clamp_per_page(500) == 100
        assert clamp_per_page(0) == 1
        assert clamp_per_page("x") == 100


class TestGitHubAdapter:
    def test_three_pages_then_stop(self):
        client = FakeClient(pages=pages_of([100, 100, 37]))
        adapter = GitHubAdapter(client=client)
        records = asyncio.run(fetch_records(adapter, SYNCED, per_page=100))
        assert len(records) == 237
        assert len(client.requests) == 3
        assert [r[2] for r in client.requests] == [1, 2, 3]
        assert records[0].full_name == "owner0/repo0"
        assert records[-1].full_name == "owner236/repo236"

    def test_empty_page_ends_without_extra_request(self):
        client = FakeClient(pages=pages_of([100]))
        adapter = GitHubAdapter(client=client)
        raws = asyncio.run(adapter.fetch(per_page=100))
        assert len(raws) == 100
        assert len(client.requests) == 2

    def test_per_page_clamped(self):
        client = FakeClient(pages=pages_of([5]))
        adapter = GitHubAdapter(client=client)
        asyncio.run(adapter.fetch(per_page=1000))
        assert client.requests[0][3] == 100

    def test_first_page_failure_raises(self):
        client = FakeClient(pages=pages_of([100]), fail_on_page=1)
        adapter = GitHubAdapter(client=client)
        with pytest.raises(SourceFetchError):
            asyncio.run(adapter.fetch())

    def test_later_page_failure_keeps_partial(self):
        client = FakeClient(pages=pages_of([100, 100, 100]), fail_on_page=3)
        adapter = GitHubAdapter(client=client)
        raws = asyncio.run(adapter.fetch(per_page=100))
        assert len(raws) == 200
        assert adapter.report.partial is True
        assert adapter.report.fetched == 200
        assert "boom" in adapter.report.error

    def test_star_json_wrapper(self):
        wrapped = [{"starred_at": "2025-05-05T10:00:00Z", "repo": repo(1)}]
        client = FakeClient(pages=[wrapped])
        adapter = GitHubAdapter(client=client)
        records = asyncio.run(fetch_records(adapter, SYNCED))
        assert records[0].starred_at == "2025-05-05T10:00:00Z"
        assert records[0].owner == "owner1"
        assert records[0].license is None

    def test_user_listing(self):
        client = FakeClient(pages=pages_of([1]))
        adapter = GitHubAdapter(config={"user": "octocat"}, client=client)
        asyncio.run(adapter.fetch())
        assert client.requests[0][1] == "octocat"

    def test_bad_items_dropped(self):
        client = FakeClient(pages=[[repo(1), "garbage", {"description": "no name"}]])
        adapter = GitHubAdapter(client=client)
        records = asyncio.run(fetch_records(adapter, SYNCED))
        assert len(records) == 1
        assert adapter.report.dropped == 2

    def test_no_client(self):
        with pytest.raises(SourceFetchError):
            asyncio.run(GitHubAdapter().fetch())


class TestBookmarkTime:
    def test_webkit_offset(self):
        # 2024-01-01T00:00:00Z as Chrome stores it
        unix_us = 1_704_067_200 * 1_000_000
        assert webkit_to_timestamp(str(unix_us + WEBKIT_EPOCH_OFFSET_US)) == "2024-01-01T00:00:00Z"

    def test_webkit_pre_epoch_is_none(self):
        assert webkit_to_timestamp("1000") is None
        assert webkit_to_timestamp(WEBKIT_EPOCH_OFFSET_US) is None

    def test_malformed_is_none(self):
        assert webkit_to_timestamp("abc") is None
        assert webkit_to_timestamp(None) is None
        assert unix_micros_to_timestamp("") is None

    def test_non_finite_is_none(self):
        for value in (json.loads("Infinity"), float("-inf"), float("nan")):
            assert webkit_to_timestamp(value) is None
            assert unix_micros_to_timestamp(value) is None

    def test_firefox_prtime(self):
        assert unix_micros_to_timestamp(1_704_067_200_000_000) == "2024-01-01T00:00:00Z"


class TestBookmarkAdapters:
    def test_generic_tree(self):
        tree = {
            "folder": "Dev",
            "children": [
                {"url": "https://github.com/acme/widget"},
                {"url": "https://github.com/settings/profile"},
            ],
        }
        adapter = ChromeBookmarksAdapter()
        raws = asyncio.run(adapter.fetch(tree=tree))
        assert len(raws) == 1
        records, _ = collect(adapter, raws, SYNCED)
        assert records[0].owner == "acme"
        assert records[0].name == "widget"
        assert records[0].source == "chrome"

    def test_chrome_file_with_folder_filter(self):
        data = {
            "roots": {
                "bookmark_bar": {
                    "type": "folder",
                    "name": "Bookmarks bar",
                    "children": [
                        {
                            "type": "folder",
                            "name": "Dev Tools",
                            "children": [
                                {
                                    "type": "url",
                                    "name": "A fast widget library",
                                    "url": "https://github.com/acme/widget.git",
                                    "date_added": str(1_704_067_200 * 1_000_000 + WEBKIT_EPOCH_OFFSET_US),
                                },
                                {"type": "url", "name": "acme/widget", "url": "https://github.com/acme/widget/issues"},
                            ],
                        },
                        {"type": "url", "name": "news", "url": "https://github.com/other/repo"},
                    ],
                },
                "other": {"type": "folder", "name": "Other", "children": []},
            }
        }
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "Bookmarks"
            path.write_text(json.dumps(data))
            adapter = ChromeBookmarksAdapter(config={"path": str(path)})
            raws = asyncio.run(adapter.fetch(folder="dev"))

        assert [r.source_id for r in raws] == ["acme/widget"]
        record = adapter.normalize(raws[0], SYNCED)
        assert record.description == "A fast widget library"
        assert record.starred_at == "2024-01-01T00:00:00Z"

    def test_first_occurrence_kept(self):
        tree = {
            "children": [
                {"title": "first", "url": "https://github.com/a/b"},
                {"title": "second", "url": "https://github.com/A/B/"},
            ]
        }
        raws = asyncio.run(ChromeBookmarksAdapter().fetch(tree=tree))
        assert len(raws) == 1
        assert raws[0].data["description"] == "first"

    def test_missing_file(self):
        adapter = ChromeBookmarksAdapter(config={"path": "/nonexistent/Bookmarks"})
        with pytest.raises(SourceFetchError):
            asyncio.run(adapter.fetch())

    def test_firefox_json_backup(self):
        tree = {
            "type": "text/x-moz-place-container",
            "title": "",
            "children": [
                {
                    "type": "text/x-moz-place-container",
                    "title": "toolbar",
                    "children": [
                        {
                            "type": "text/x-moz-place",
                            "title": "widget",
                            "uri": "https://github.com/acme/widget",
                            "dateAdded": 1_704_067_200_000_000,
                        }
                    ],
                }
            ],
        }
        adapter = FirefoxBookmarksAdapter()
        records = asyncio.run(fetch_records(adapter, SYNCED, tree=tree))
        assert len(records) == 1
        assert records[0].source == "firefox"
        assert records[0].description is None
        assert records[0].starred_at == "2024-01-01T00:00:00Z"

    def test_firefox_places_sqlite(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "places.sqlite"
            conn = sqlite3.connect(str(path))
            conn.executescript(
                """
                CREATE TABLE moz_places (id INTEGER PRIMARY KEY, url TEXT);
                CREATE TABLE moz_bookmarks (
                    id INTEGER PRIMARY KEY, type INTEGER, fk INTEGER,
                    parent INTEGER, position INTEGER, title TEXT, dateAdded INTEGER
                );
                INSERT INTO moz_places VALUES (1, 'https://github.com/acme/widget');
                INSERT INTO moz_places VALUES (2, 'https://github.com/other/thing');
                INSERT INTO moz_bookmarks VALUES (1, 2, NULL, 0, 0, '', 0);
                INSERT INTO moz_bookmarks VALUES (2, 2, NULL, 1, 0, 'Dev', 0);
                INSERT INTO moz_bookmarks VALUES (3, 2, NULL, 1, 1, 'Misc', 0);
                INSERT INTO moz_bookmarks VALUES (4, 1, 1, 2, 0, 'Widget', 1704067200000000);
                INSERT INTO moz_bookmarks VALUES (5, 1, 2, 3, 0, 'Thing', 1704067200000000);
                """
            )
            conn.commit()
            conn.close()

            adapter = FirefoxBookmarksAdapter(config={"path": str(path), "folder": "Dev"})
            raws = asyncio.run(adapter.fetch())

        assert [r.source_id for r in raws] == ["acme/widget"]

    def test_build_places_tree(self):
        rows = [
            (1, 2, 0, "", 0, None),
            (2, 2, 1, "Dev", 0, None),
            (3, 1, 2, "x", 5, "https://github.com/a/b"),
        ]
        tree = build_places_tree(rows)
        root = tree["children"][0]
        assert root["children"][0]["title"] == "Dev"
        assert root["children"][0]["children"][0]["uri"] == "https://github.com/a/b"


README = """
# Awesome Widgets

- [widget](https://github.com/acme/widget) - the widget.
- [Gadget toolkit](github.com/acme/gadget)
- See also https://github.com/acme/sprocket.
- Mirror: github.com/acme/cog
- [acme/widget](https://github.com/acme/widget)
- [Settings](https://github.com/settings/profile)
"""


class TestExtractLinks:
    def test_four_shapes(self):
        links = extract_links(README)
        urls = [u for u, _ in links]
        assert urls == [
            "https://github.com/acme/widget",
            "github.com/acme/gadget",
            "https://github.com/acme/sprocket",
            "github.com/acme/cog",
            "https://github.com/acme/widget",
            "https://github.com/settings/profile",
        ]

    def test_bare_url_inside_link_not_double_counted(self):
        links = extract_links("[https://github.com/a/b](https://github.com/a/b)")
        assert len(links) == 1


class TestAwesomeListAdapter:
    def test_extract_and_describe(self):
        adapter = AwesomeListAdapter()
        records = asyncio.run(fetch_records(adapter, SYNCED, text=README))
        by_name = {r.full_name: r for r in records}
        assert list(by_name) == ["acme/widget", "acme/gadget", "acme/sprocket", "acme/cog"]
        assert by_name["acme/widget"].description is None
        assert by_name["acme/gadget"].description == "Gadget toolkit"
        assert all(r.source == "awesome" for r in records)

    def test_readme_from_repo(self):
        client = FakeClient(readme=README)
        adapter = AwesomeListAdapter(client=client)
        raws = asyncio.run(adapter.fetch(repo="acme/awesome-widgets"))
        assert len(raws) == 4
        assert client.requests == [("get_readme", "acme/awesome-widgets")]

    def test_enrichment_batches_and_fallback(self):
        full = dict(repo(1), full_name="acme/widget", name="widget", owner={"login": "acme"},
                    language="Go", stargazers_count=900)
        client = FakeClient(repos={"acme/widget": full})
        adapter = AwesomeListAdapter(
            config={"batch_size": 2, "batch_delay": 0.5}, client=client
        )

        sleeps = []

        async def fake_sleep(delay):
            sleeps.append(delay)

        with patch("stardex.sources.markdown.asyncio.sleep", fake_sleep):
            records = asyncio.run(fetch_records(adapter, SYNCED, text=README, enrich=True))

        assert len(records) == 4
        assert sleeps == [0.5]
        assert [r[0] for r in client.requests] == ["get_repo"] * 4
        widget = next(r for r in records if r.full_name == "acme/widget")
        assert widget.language == "Go"
        assert widget.stars == 900
        gadget = next(r for r in records if r.full_name == "acme/gadget")
        assert gadget.description == "Gadget toolkit"
        assert gadget.stars == 0


class TestManualAdapter:
    def test_refs(self):
        adapter = ManualAdapter(config={"repos": ["acme/widget", "https://github.com/a/b", "bogus"]})
        records = asyncio.run(fetch_records(adapter, SYNCED))
        assert [r.full_name for r in records] == ["acme/widget", "a/b"]
        assert adapter.report.dropped == 1
        assert isinstance(adapter.report, FetchReport)
