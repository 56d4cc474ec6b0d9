"""
GitHub fetcher - lists the repositories owned by the linked account.

Calls ``GET /user/repos?affiliation=owner&sort=pushed`` with the link's
OAuth token. Results are newest-push first, so an incremental fetch stops
at the first repository not pushed after ``since``.

GitHub OAuth app tokens do not expire and carry no refresh token; a
rejected token is a per-link failure.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx

from profilesync.config import settings
from profilesync.connectors.base import RemoteItemFetcher
from profilesync.core.sync.types import RemoteItem
from profilesync.core.utils.time_utils import as_utc

_PAGE_SIZE = 100


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return as_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))
    except ValueError:
        return None


def _repo_properties(repo: Dict[str, Any]) -> Dict[str, Any]:
    owner = repo.get("owner") or {}
    return {
        "name": repo.get("name"),
        "full_name": repo.get("full_name"),
        "description": repo.get("description"),
        "html_url": repo.get("html_url"),
        "owner": owner.get("login"),
        "language": repo.get("language"),
        "stargazers_count": repo.get("stargazers_count", 0),
        "forks_count": repo.get("forks_count", 0),
        "topics": repo.get("topics") or [],
        "fork": bool(repo.get("fork")),
        "archived": bool(repo.get("archived")),
        "pushed_at": repo.get("pushed_at"),
        "created_at": repo.get("created_at"),
    }


class GitHubFetcher(RemoteItemFetcher):
    kind = "github"
    supports_incremental = True

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(base_url or settings.github_api_base_url, timeout, transport)

    async def fetch_remote_items(
        self,
        access_token: Optional[str],
        remote_id: Optional[str],
        since: Optional[datetime],
        max_items: int,
    ) -> List[RemoteItem]:
        repos: List[RemoteItem] = []
        page = 1

        async with self._get_client(access_token) as client:
            while len(repos) < max_items:
                batch = await self._get_json(
                    client,
                    "/user/repos",
                    params={
                        "affiliation": "owner",
                        "visibility": "public",
                        "sort": "pushed",
                        "direction": "desc",
                        "per_page": _PAGE_SIZE,
                        "page": page,
                    },
                    headers={"Accept": "application/vnd.github+json"},
                )
                if not batch:
                    break

                for repo in batch:
                    if repo.get("private"):
                        continue
                    pushed_at = _parse_timestamp(repo.get("pushed_at"))
                    if since is not None and pushed_at is not None and pushed_at <= since:
                        return repos
                    repos.append(RemoteItem(remote_id=str(repo["id"]), properties=_repo_properties(repo)))
                    if len(repos) >= max_items:
                        break

                if len(batch) < _PAGE_SIZE:
                    break
                page += 1

        return repos
