"""
SpeakerDeck fetcher - reads a user's public deck feed.

``GET https://speakerdeck.com/<username>.rss`` needs no credentials and
always returns the complete public list, so every fetch is a full fetch
and links of this kind carry no OAuth token.
"""

import re
import xml.etree.ElementTree as ET
from datetime import datetime
from email.utils import parsedate_to_datetime
from typing import List, Optional

import httpx

from profilesync.config import settings
from profilesync.connectors.base import RemoteItemFetcher
from profilesync.core.errors import ProviderError
from profilesync.core.sync.types import RemoteItem
from profilesync.core.utils.time_utils import as_utc

_USERNAME_PREFIXES = ("https://", "http://", "www.", "speakerdeck.com/")


def normalize_username(value: str) -> str:
    """Accept ``https://speakerdeck.com/eser``, ``speakerdeck.com/eser`` or ``eser``."""
    username = value.strip()
    for prefix in _USERNAME_PREFIXES:
        if username.startswith(prefix):
            username = username[len(prefix):]
    return username.strip("/").split("/")[0]


def _text(element: ET.Element, tag: str) -> Optional[str]:
    child = element.find(tag)
    if child is None or child.text is None:
        return None
    return child.text.strip()


def _deck_slug(link: str) -> str:
    match = re.search(r"speakerdeck\.com/[^/]+/([^/?#]+)", link)
    return match.group(1) if match else link


def _parse_pub_date(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return as_utc(parsedate_to_datetime(value))
    except (TypeError, ValueError):
        return None


class SpeakerDeckFetcher(RemoteItemFetcher):
    kind = "speakerdeck"
    supports_incremental = False
    requires_auth = False

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(base_url or settings.speakerdeck_base_url, timeout, transport)

    async def fetch_remote_items(
        self,
        access_token: Optional[str],
        remote_id: Optional[str],
        since: Optional[datetime],
        max_items: int,
    ) -> List[RemoteItem]:
        if not remote_id:
            raise ProviderError("speakerdeck link has no username")

        username = normalize_username(remote_id)
        async with self._get_client() as client:
            response = await self._request(client, "GET", f"/{username}.rss")

        try:
            root = ET.fromstring(response.content)
        except ET.ParseError as e:
            raise ProviderError(f"speakerdeck feed for {username} is not valid RSS") from e

        decks: List[RemoteItem] = []
        for item in root.iter("item"):
            link = _text(item, "link")
            if not link:
                continue
            published_at = _parse_pub_date(_text(item, "pubDate"))
            decks.append(
                RemoteItem(
                    remote_id=_text(item, "guid") or link,
                    properties={
                        "title": _text(item, "title"),
                        "description": _text(item, "description"),
                        "link": link,
                        "slug": _deck_slug(link),
                        "username": username,
                        "published_at": published_at.isoformat() if published_at else None,
                    },
                )
            )
            if len(decks) >= max_items:
                break

        return decks
