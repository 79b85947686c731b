"""Thin GitHub REST client used by the sources.

Authentication is whatever token the caller hands in; there is no retry or
rate-limit policy here beyond surfacing failures as SourceFetchError.
"""

from __future__ import annotations

import asyncio
import logging
from types import TracebackType
from typing import Any, Protocol, runtime_checkable

import aiohttp

from .errors import SourceFetchError

logger = logging.getLogger(__name__)

GITHUB_API = "https://api.github.com"
MAX_PER_PAGE = 100


@runtime_checkable
class StarsClient(Protocol):
    """What the sources need from a GitHub client."""

    async def list_starred(
        self, user: str | None, page: int, per_page: int
    ) -> list[dict[str, Any]]:
        ...

    async def get_repo(self, full_name: str) -> dict[str, Any]:
        ...

    async def get_readme(self, full_name: str) -> str:
        ...


class GitHubClient:
    """aiohttp-backed implementation of StarsClient."""

    def __init__(
        self,
        token: str | None = None,
        *,
        base_url: str = GITHUB_API,
        cache: bool = False,
        timeout: float = 30.0,
    ):
        self.token = token
        self.base_url = base_url.rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self._cache: dict[str, Any] | None = {} if cache else None
        self._session: aiohttp.ClientSession | None = None

    async def __aenter__(self) -> GitHubClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    def _headers(self, accept: str = "application/vnd.github.star+json") -> dict[str, str]:
        headers = {
            "Accept": accept,
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    @property
    def session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
        return self._session

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def _get(
        self,
        path: str,
        params: dict[str, Any] | None = None,
        accept: str = "application/vnd.github.star+json",
        as_text: bool = False,
    ) -> Any:
        url = f"{self.base_url}{path}"
        cache_key = f"{url}?{sorted((params or {}).items())}|{accept}"
        if self._cache is not None and cache_key in self._cache:
            return self._cache[cache_key]

        try:
            async with self.session.get(
                url, params=params, headers=self._headers(accept)
            ) as resp:
                if resp.status != 200:
                    body = (await resp.text())[:200]
                    raise SourceFetchError(
                        "github", f"GET {path} returned {resp.status}: {body}",
                        status=resp.status,
                    )
                data = await resp.text() if as_text else await resp.json()
        except asyncio.TimeoutError as e:
            raise SourceFetchError("github", f"GET {path} timed out") from e
        except (aiohttp.ClientError, ValueError) as e:
            raise SourceFetchError("github", f"GET {path} failed: {e}") from e

        if self._cache is not None:
            self._cache[cache_key] = data
        return data

    async def list_starred(
        self, user: str | None, page: int, per_page: int
    ) -> list[dict[str, Any]]:
        path = f"/users/{user}/starred" if user else "/user/starred"
        data = await self._get(
            path, params={"page": page, "per_page": min(per_page, MAX_PER_PAGE)}
        )
        if not isinstance(data, list):
            raise SourceFetchError("github", f"GET {path} returned a non-list body")
        logger.debug("Fetched %s page %d: %d items", path, page, len(data))
        return data

    async def get_repo(self, full_name: str) -> dict[str, Any]:
        data = await self._get(
            f"/repos/{full_name}", accept="application/vnd.github+json"
        )
        if not isinstance(data, dict):
            raise SourceFetchError("github", f"GET /repos/{full_name} returned a non-object body")
        return data

    async def get_readme(self, full_name: str) -> str:
        return await self._get(
            f"/repos/{full_name}/readme",
            accept="application/vnd.github.raw+json",
            as_text=True,
        )
