"""HTTP client for the remote per-user data endpoint."""

import logging
from typing import Optional

import httpx

logger = logging.getLogger(__name__)


class SyncError(Exception):
    """A request to the remote data endpoint failed."""


class RemoteClient:
    """Client for GET/POST of a user's state blob."""

    def __init__(
        self,
        api_url: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize remote client.

        Args:
            api_url: Data endpoint URL (e.g., http://localhost:8000/api/data)
            timeout: Request timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        self.api_url = api_url
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def connect(self):
        """Open the underlying HTTP connection pool."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            )
            logger.debug(f"Opened client for {self.api_url}")

    async def disconnect(self):
        """Close the underlying HTTP connection pool."""
        if self._client:
            await self._client.aclose()
            self._client = None
            logger.debug("Closed sync client")

    async def _request(self, method: str, user_id: str, **kwargs) -> dict:
        """
        Send a request and return the decoded JSON body.

        Raises:
            SyncError: On transport errors, non-2xx responses or a body that
                is not a JSON object
        """
        await self.connect()
        headers = {"X-User-Id": user_id, "Content-Type": "application/json"}

        try:
            response = await self._client.request(
                method, self.api_url, headers=headers, **kwargs
            )
        except httpx.HTTPError as e:
            raise SyncError(f"Request failed: {e}") from e

        if not response.is_success:
            raise SyncError(f"{method} failed: {response.status_code}")

        try:
            body = response.json()
        except ValueError as e:
            raise SyncError(f"Invalid response body: {e}") from e

        if not isinstance(body, dict):
            raise SyncError(f"Unexpected response body: {type(body).__name__}")
        return body

    async def fetch(self, user_id: str) -> dict:
        """
        Fetch a user's blob.

        Returns:
            Dictionary with keys: data (blob or None), lastSyncedAt
        """
        return await self._request("GET", user_id)

    async def save(self, user_id: str, data: dict) -> dict:
        """
        Store a user's blob.

        Returns:
            Dictionary with keys: success, lastSyncedAt
        """
        return await self._request("POST", user_id, json={"data": data})
