"""
HTTP client utilities for upstream API calls.
"""

import asyncio
from typing import Any

import aiohttp


class AsyncHTTPClient:
    """Async JSON HTTP client bound to a base URL.

    Non-2xx responses raise ``aiohttp.ClientResponseError`` so callers can
    branch on ``error.status``.
    """

    def __init__(
        self,
        base_url: str = "",
        timeout: int = 30,
        headers: dict[str, str] | None = None,
    ) -> None:
        """Initialize HTTP client."""
        self.base_url = base_url.rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.default_headers = dict(headers or {})
        self.session: aiohttp.ClientSession | None = None

    async def __aenter__(self) -> "AsyncHTTPClient":
        """Enter async context manager."""
        self.session = aiohttp.ClientSession(timeout=self.timeout)
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Exit async context manager."""
        if self.session:
            await self.session.close()
            self.session = None

    def _url(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    def _headers(self, headers: dict[str, str] | None) -> dict[str, str]:
        merged = dict(self.default_headers)
        if headers:
            merged.update(headers)
        return merged

    @staticmethod
    async def _prepare_request(coro_or_ctx: Any) -> Any:
        """Normalize aiohttp request result to an async context manager."""
        if asyncio.iscoroutine(coro_or_ctx):
            return await coro_or_ctx
        return coro_or_ctx

    @staticmethod
    async def _ensure_response_ok(response: Any) -> None:
        """Invoke raise_for_status, awaiting when necessary."""
        result = response.raise_for_status()
        if asyncio.iscoroutine(result):
            await result

    async def get(
        self,
        path: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        """Perform GET request and decode the JSON body."""
        if not self.session:
            raise RuntimeError("HTTP client not initialized. Use async context manager.")

        request_ctx = await self._prepare_request(
            self.session.get(self._url(path), params=params, headers=self._headers(headers))
        )
        async with request_ctx as response:
            await self._ensure_response_ok(response)
            return await response.json()

    async def post(
        self,
        path: str,
        data: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        """Perform POST request with a JSON body and decode the JSON response."""
        if not self.session:
            raise RuntimeError("HTTP client not initialized. Use async context manager.")

        request_ctx = await self._prepare_request(
            self.session.post(
                self._url(path),
                json=data,
                params=params,
                headers=self._headers(headers),
            )
        )
        async with request_ctx as response:
            await self._ensure_response_ok(response)
            return await response.json()
