"""
HTTP client for the Bulletin Service.
"""

from typing import Any, Dict, List, Optional

import httpx

from shared.errors import MutationFailed, NotFoundError, StoreUnavailable, ValidationError
from shared.config import BaseConfig
from shared.logging import get_logger
from shared.retry import retry_on_exception, RetryConfig

READ_RETRY = RetryConfig(max_attempts=3, base_delay=0.1, max_delay=1.0, reraise=True)


class BulletinClient:
    """Client for communicating with the Bulletin Service.

    Reads are retried on ``StoreUnavailable``. Writes are issued once: a
    rejected write raises ``MutationFailed`` so optimistic callers can revert.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 10.0,
        user_id: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.user_id = user_id
        self.transport = transport
        self.logger = get_logger("bulletin_client.http")

    @classmethod
    def from_config(cls, config: BaseConfig, **kwargs) -> "BulletinClient":
        """Build a client from ``BULLETIN_SERVICE_URL`` and ``BULLETIN_REQUEST_TIMEOUT``."""
        kwargs.setdefault("user_id", config.default_user_id)
        return cls(config.service_url, timeout=config.request_timeout, **kwargs)

    def _client(self) -> httpx.AsyncClient:
        headers = {}
        if self.user_id is not None:
            headers["X-User-Id"] = str(self.user_id)
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            headers=headers,
            transport=self.transport,
        )

    async def _request(self, method: str, path: str, *, write: bool, json: Any = None) -> Any:
        try:
            async with self._client() as client:
                response = await client.request(method, path, json=json)
        except httpx.HTTPError as e:
            self.logger.error("Bulletin service unreachable", method=method, path=path, error=str(e))
            raise StoreUnavailable(
                "Bulletin service unavailable",
                details={"path": path, "http_error": str(e)}
            ) from e

        if response.status_code < 400:
            return response.json()

        details = self._error_details(response)
        self.logger.warning(
            "Bulletin service error",
            method=method,
            path=path,
            status_code=response.status_code,
            code=details.get("code"),
        )
        message = details.get("message") or f"Bulletin service error: {response.status_code}"

        if response.status_code >= 500:
            raise StoreUnavailable(message, details=details)
        if response.status_code == 404:
            raise NotFoundError(message, details=details)
        if write:
            raise MutationFailed(message, details=details)
        raise ValidationError(message, details=details)

    @staticmethod
    def _error_details(response: httpx.Response) -> Dict[str, Any]:
        try:
            body = response.json()
        except ValueError:
            return {"status_code": response.status_code}
        if not isinstance(body, dict):
            return {"status_code": response.status_code}
        return {**body, "status_code": response.status_code}

    @retry_on_exception((StoreUnavailable,), config=READ_RETRY)
    async def get_messages(self) -> List[Dict[str, Any]]:
        """Fetch all messages."""
        data = await self._request("GET", "/messages", write=False)
        return data["messages"]

    async def add_message(self, text: str) -> Dict[str, Any]:
        """Post a message."""
        return await self._request("POST", "/messages", write=True, json={"text": text})

    @retry_on_exception((StoreUnavailable,), config=READ_RETRY)
    async def get_posts(self) -> List[Dict[str, Any]]:
        """Fetch the feed as seen by this client's user."""
        data = await self._request("GET", "/posts", write=False)
        return data["posts"]

    async def toggle_like(self, post_id: int) -> Dict[str, Any]:
        """Flip the like on a post; returns the authoritative ``{id, is_liked, likes}``."""
        return await self._request("POST", f"/posts/{post_id}/like", write=True)

    @retry_on_exception((StoreUnavailable,), config=READ_RETRY)
    async def get_archive(self, year: Optional[str] = None, month: Optional[str] = None) -> Dict[str, Any]:
        """Fetch archive links and news for an optional year/month filter."""
        path = "/archive"
        if year is not None:
            path += f"/{year}"
            if month is not None:
                path += f"/{month}"
        return await self._request("GET", path, write=False)
