"""
RemoteItemFetcher ABC - Base class for provider fetchers.

A fetcher lists the remote items (videos, repositories, decks) that belong
to one linked account. The sync engine depends only on this interface; it
never sees provider URLs or payload shapes.

Subclasses must implement:
    - kind: provider kind matching ProfileLink.kind
    - fetch_remote_items(): list items, optionally only those newer than ``since``

Subclasses may override:
    - supports_incremental: True when ``since`` narrows the result
    - requires_auth: False for public providers that need no OAuth token
    - refresh_access_token(): exchange a refresh token for a new access token

Error mapping:
    HTTP 401/403          -> AuthenticationError (triggers one token refresh)
    other HTTP >= 400     -> ProviderError(status_code=...)
    transport failures    -> ProviderError
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx

from profilesync.config import settings
from profilesync.core.errors import AuthenticationError, ProviderError, TokenRefreshError
from profilesync.core.sync.types import RemoteItem, TokenRefreshResult

logger = logging.getLogger("profilesync.connectors")


class RemoteItemFetcher(ABC):
    """
    Base class for provider fetchers.

    Attributes:
        base_url: Provider API root
        timeout: Request timeout in seconds
        transport: Optional httpx transport (tests inject httpx.MockTransport)
    """

    kind: str
    supports_incremental: bool = False
    requires_auth: bool = True

    def __init__(
        self,
        base_url: str,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout if timeout is not None else settings.provider_http_timeout
        self.transport = transport

    @abstractmethod
    async def fetch_remote_items(
        self,
        access_token: Optional[str],
        remote_id: Optional[str],
        since: Optional[datetime],
        max_items: int,
    ) -> List[RemoteItem]:
        """
        List remote items for one linked account.

        Args:
            access_token: OAuth access token (None for public providers)
            remote_id: Account identifier at the provider
            since: Only items published/changed after this time; None for everything
            max_items: Upper bound on returned items

        Raises:
            AuthenticationError: Credentials rejected
            ProviderError: Any other failure
        """
        ...

    async def refresh_access_token(self, refresh_token: str) -> TokenRefreshResult:
        """Exchange a refresh token. Providers without OAuth refresh cannot do this."""
        raise TokenRefreshError(f"{self.kind} does not support token refresh")

    def _get_client(self, access_token: Optional[str] = None) -> httpx.AsyncClient:
        """Create a fresh HTTP client per call to avoid event-loop-closed errors in Celery."""
        headers = {"User-Agent": "profilesync/1.0"}
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"
        kwargs: Dict[str, Any] = {
            "base_url": self.base_url,
            "timeout": self.timeout,
            "headers": headers,
            "follow_redirects": True,
        }
        if self.transport is not None:
            kwargs["transport"] = self.transport
        return httpx.AsyncClient(**kwargs)

    async def _request(
        self,
        client: httpx.AsyncClient,
        method: str,
        url: str,
        **kwargs: Any,
    ) -> httpx.Response:
        try:
            response = await client.request(method, url, **kwargs)
        except httpx.RequestError as e:
            raise ProviderError(f"{self.kind} request failed: {e}") from e

        if response.status_code in (401, 403):
            raise AuthenticationError(
                f"{self.kind} rejected credentials (HTTP {response.status_code})",
                status_code=response.status_code,
            )
        if response.status_code >= 400:
            raise ProviderError(
                f"{self.kind} HTTP {response.status_code}: {response.text[:500]}",
                status_code=response.status_code,
            )
        return response

    async def _get_json(self, client: httpx.AsyncClient, url: str, **kwargs: Any) -> Any:
        response = await self._request(client, "GET", url, **kwargs)
        try:
            return response.json()
        except ValueError as e:
            raise ProviderError(f"{self.kind} returned invalid JSON from {url}") from e

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}(kind={self.kind}, base_url={self.base_url})>"
