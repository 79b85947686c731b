"""GitHub repository URL parsing shared by the bookmark, markdown and manual sources."""

from __future__ import annotations

import re

# github.com/{owner}/{repo}[/...], scheme and www optional.
GITHUB_REPO_RE = re.compile(
    r"^(?:https?://)?(?:www\.)?github\.com/"
    r"(?P<owner>[A-Za-z0-9](?:[A-Za-z0-9-]*[A-Za-z0-9])?)/"
    r"(?P<repo>[A-Za-z0-9._-]+)"
    r"(?:[/?#].*)?$",
    re.IGNORECASE,
)

# First path segments that are GitHub pages rather than users or orgs.
RESERVED_OWNERS = frozenset(
    {
        "about",
        "account",
        "apps",
        "blog",
        "collections",
        "contact",
        "customer-stories",
        "enterprise",
        "events",
        "explore",
        "features",
        "issues",
        "join",
        "login",
        "logout",
        "marketplace",
        "new",
        "notifications",
        "orgs",
        "organizations",
        "pricing",
        "pulls",
        "search",
        "security",
        "sessions",
        "settings",
        "site",
        "sponsors",
        "stars",
        "team",
        "topics",
        "trending",
        "users",
    }
)

# Second path segments that are profile tabs or site pages, not repositories.
RESERVED_REPOS = frozenset(
    {
        "followers",
        "following",
        "repositories",
        "projects",
        "packages",
        "stars",
        "sponsors",
        "achievements",
    }
)


def parse_github_url(url: str | None) -> tuple[str, str] | None:
    """Return ``(owner, repo)`` for a repository URL, or None.

    Trailing path segments, query strings and a ``.git`` suffix are ignored.
    Known non-repository paths (settings, trending, profile tabs...) are
    rejected.
    """
    if not url or not isinstance(url, str):
        return None
    match = GITHUB_REPO_RE.match(url.strip())
    if not match:
        return None

    owner = match.group("owner")
    repo = match.group("repo")
    if repo.lower().endswith(".git"):
        repo = repo[:-4]
    if not repo or repo in (".", ".."):
        return None
    if owner.lower() in RESERVED_OWNERS or repo.lower() in RESERVED_REPOS:
        return None
    return owner, repo


def parse_repo_ref(ref: str | None) -> tuple[str, str] | None:
    """Accept either a GitHub URL or a bare ``owner/repo`` reference."""
    if not ref or not isinstance(ref, str):
        return None
    ref = ref.strip()
    if "github.com" in ref.lower():
        return parse_github_url(ref)
    return parse_github_url(f"github.com/{ref}")


def repo_url(owner: str, repo: str) -> str:
    return f"https://github.com/{owner}/{repo}"
