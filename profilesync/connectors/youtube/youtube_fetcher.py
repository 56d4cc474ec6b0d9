"""
YouTube fetcher - lists a channel's uploaded videos.

Uses the YouTube Data API v3 with the link's OAuth access token:
    1. channels?part=contentDetails -> uploads playlist ID
    2. playlistItems?part=snippet,contentDetails (newest first, 50 per page)

Incremental fetches stop paging at the first video published at or before
``since``; the uploads playlist is ordered newest first.

Token refresh posts a refresh_token grant to Google's OAuth endpoint.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

import httpx

from profilesync.config import settings
from profilesync.connectors.base import RemoteItemFetcher
from profilesync.core.errors import ProviderError, TokenRefreshError
from profilesync.core.sync.types import RemoteItem, TokenRefreshResult
from profilesync.core.utils.time_utils import as_utc, utcnow

logger = logging.getLogger("profilesync.connectors.youtube")

# YouTube API page size limit
_PAGE_SIZE = 50

_THUMBNAIL_PREFERENCE = ("maxres", "standard", "high", "medium", "default")


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return as_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))
    except ValueError:
        return None


def _best_thumbnail(thumbnails: Dict[str, Any]) -> Optional[str]:
    for name in _THUMBNAIL_PREFERENCE:
        thumb = thumbnails.get(name)
        if thumb and thumb.get("url"):
            return thumb["url"]
    return None


class YouTubeFetcher(RemoteItemFetcher):
    kind = "youtube"
    supports_incremental = True

    def __init__(
        self,
        base_url: Optional[str] = None,
        token_url: Optional[str] = None,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(base_url or settings.youtube_api_base_url, timeout, transport)
        self.token_url = token_url or settings.youtube_token_url
        self.client_id = client_id if client_id is not None else settings.youtube_client_id
        self.client_secret = client_secret if client_secret is not None else settings.youtube_client_secret

    async def fetch_remote_items(
        self,
        access_token: Optional[str],
        remote_id: Optional[str],
        since: Optional[datetime],
        max_items: int,
    ) -> List[RemoteItem]:
        if not remote_id:
            raise ProviderError("youtube link has no channel ID")

        async with self._get_client(access_token) as client:
            playlist_id = await self._get_uploads_playlist_id(client, remote_id)
            return await self._fetch_playlist_videos(client, playlist_id, since, max_items)

    async def _get_uploads_playlist_id(self, client: httpx.AsyncClient, channel_id: str) -> str:
        data = await self._get_json(
            client, "/channels", params={"part": "contentDetails", "id": channel_id}
        )
        items = data.get("items") or []
        if not items:
            raise ProviderError(f"youtube channel {channel_id} not found", status_code=404)
        try:
            return items[0]["contentDetails"]["relatedPlaylists"]["uploads"]
        except (KeyError, TypeError) as e:
            raise ProviderError(f"youtube channel {channel_id} has no uploads playlist") from e

    async def _fetch_playlist_videos(
        self,
        client: httpx.AsyncClient,
        playlist_id: str,
        since: Optional[datetime],
        max_items: int,
    ) -> List[RemoteItem]:
        videos: List[RemoteItem] = []
        page_token: Optional[str] = None

        while len(videos) < max_items:
            params: Dict[str, Any] = {
                "part": "snippet,contentDetails",
                "playlistId": playlist_id,
                "maxResults": min(_PAGE_SIZE, max_items - len(videos)),
            }
            if page_token:
                params["pageToken"] = page_token

            data = await self._get_json(client, "/playlistItems", params=params)

            for item in data.get("items") or []:
                snippet = item.get("snippet") or {}
                details = item.get("contentDetails") or {}
                video_id = details.get("videoId")
                if not video_id:
                    continue

                published_at = _parse_timestamp(details.get("videoPublishedAt") or snippet.get("publishedAt"))
                if since is not None and published_at is not None and published_at <= since:
                    return videos

                videos.append(
                    RemoteItem(
                        remote_id=video_id,
                        properties={
                            "title": snippet.get("title"),
                            "description": snippet.get("description"),
                            "published_at": published_at.isoformat() if published_at else None,
                            "thumbnail_url": _best_thumbnail(snippet.get("thumbnails") or {}),
                            "channel_id": snippet.get("channelId"),
                            "channel_title": snippet.get("channelTitle"),
                            "playlist_id": playlist_id,
                            "position": snippet.get("position"),
                        },
                    )
                )
                if len(videos) >= max_items:
                    break

            page_token = data.get("nextPageToken")
            if not page_token:
                break

        return videos

    async def refresh_access_token(self, refresh_token: str) -> TokenRefreshResult:
        if not self.client_id or not self.client_secret:
            raise TokenRefreshError("youtube OAuth client is not configured")

        form = {
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "refresh_token": refresh_token,
            "grant_type": "refresh_token",
        }
        try:
            async with self._get_client() as client:
                response = await client.post(self.token_url, data=form)
        except httpx.RequestError as e:
            raise TokenRefreshError(f"youtube token refresh failed: {e}") from e

        if response.status_code != 200:
            raise TokenRefreshError(
                f"youtube token refresh failed: HTTP {response.status_code}",
                status_code=response.status_code,
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise TokenRefreshError("youtube token refresh returned invalid JSON") from e

        access_token = payload.get("access_token")
        if not access_token:
            raise TokenRefreshError("youtube token refresh returned no access token")

        expires_in = payload.get("expires_in")
        expires_at = utcnow() + timedelta(seconds=int(expires_in)) if expires_in else None
        logger.debug("Refreshed youtube access token")
        return TokenRefreshResult(
            access_token=access_token,
            expires_at=expires_at,
            refresh_token=payload.get("refresh_token") or None,
        )
