"""HTTP client for the Taskman REST API.

The MCP tools are thin wrappers around these calls; payloads are passed
through untouched.
"""

from __future__ import annotations

import logging
from http import HTTPStatus
from typing import Any

import httpx

from ..errors import McpError

logger = logging.getLogger(__name__)


class APIError(McpError):
    """The Taskman API answered with a status >= 400."""

    def __init__(self, status_code: int, message: str, response: str = "") -> None:
        super().__init__(f"API error {status_code}: {message}")
        self.status_code = status_code
        self.message = message
        self.response = response


class TaskmanAPIClient:
    """Async client for the Taskman REST API."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._http_client = http_client
        self._owns_http_client = http_client is None
        logger.info(f"Creating API client (base_url={self.base_url}, timeout={timeout}s)")

    def _ensure_http_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=httpx.Timeout(self.timeout))
        return self._http_client

    async def _fetch(self, method: str, path: str, json: Any | None = None) -> Any:
        """Execute a request and return the decoded JSON body (None if empty)."""
        client = self._ensure_http_client()
        logger.info(f"Making API request: {method} {path}")

        try:
            response = await client.request(method, f"{self.base_url}{path}", json=json)
        except httpx.HTTPError as e:
            logger.error(f"API request failed: {method} {path} ({e})")
            raise

        logger.info(
            f"API request completed: status={response.status_code}, "
            f"size={len(response.content)}"
        )

        if response.status_code >= 400:
            logger.error(f"API request failed: status={response.status_code}, body={response.text}")
            try:
                reason = HTTPStatus(response.status_code).phrase
            except ValueError:
                reason = "Unknown Status"
            raise APIError(response.status_code, reason, response.text)

        if not response.content:
            return None
        return response.json()

    async def get(self, path: str) -> Any:
        return await self._fetch("GET", path)

    async def post(self, path: str, body: Any | None = None) -> Any:
        return await self._fetch("POST", path, json=body)

    async def close(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._http_client is not None and self._owns_http_client:
            await self._http_client.aclose()
            self._http_client = None
