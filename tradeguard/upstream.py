"""
Shared plumbing for upstream market-data APIs.

Thin wrapper around httpx. Every failure is converted into an
UpstreamError so callers can tell rate limiting apart from everything else.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

logger = logging.getLogger(__name__)

# Exceptions raised while reshaping a payload that is not what we expect.
PARSE_ERRORS = (AttributeError, KeyError, IndexError, TypeError, ValueError)


class UpstreamError(Exception):
    """Raised when an upstream API call fails."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        upstream: str = "upstream",
    ):
        super().__init__(message)
        self.status_code = status_code
        self.upstream = upstream

    @property
    def http_status(self) -> int:
        """Status code to report to our own clients when no fallback exists."""
        if self.status_code is None:
            return 503
        if 400 <= self.status_code < 500:
            return self.status_code
        return 502


class RateLimitedError(UpstreamError):
    """The upstream answered 429."""

    def __init__(self, message: str, upstream: str = "upstream"):
        super().__init__(message, status_code=429, upstream=upstream)


class NotFoundError(UpstreamError):
    """The requested asset does not exist upstream."""

    def __init__(self, message: str, upstream: str = "upstream"):
        super().__init__(message, status_code=404, upstream=upstream)


class UpstreamClient:
    """Async JSON GET client bound to one upstream base URL."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        base_url: str,
        upstream: str = "upstream",
    ) -> None:
        self._http = http_client
        self._base_url = base_url.rstrip("/")
        self._upstream = upstream

    def _headers(self) -> dict[str, str]:
        return {"Accept": "application/json"}

    def url_for(self, path: str) -> str:
        return f"{self._base_url}/{path.lstrip('/')}"

    async def _get(
        self,
        path: str,
        params: Any = None,
        timeout: float = 10.0,
    ) -> Any:
        """Make an HTTP GET request and return the decoded JSON body."""
        url = self.url_for(path)
        try:
            response = await self._http.get(
                url, params=params, headers=self._headers(), timeout=timeout
            )
        except httpx.HTTPError as exc:
            logger.warning("%s request failed: GET %s -> %s", self._upstream, url, exc)
            raise UpstreamError(
                f"{self._upstream} network error: {exc}", upstream=self._upstream
            ) from exc

        if response.status_code == 429:
            raise RateLimitedError(
                f"{self._upstream} API rate limit exceeded. Please try again later.",
                upstream=self._upstream,
            )

        if response.status_code != 200:
            raise UpstreamError(
                f"{self._upstream} returned {response.status_code}",
                status_code=response.status_code,
                upstream=self._upstream,
            )

        try:
            return response.json()
        except ValueError as exc:
            raise UpstreamError(
                f"{self._upstream} returned malformed JSON",
                status_code=response.status_code,
                upstream=self._upstream,
            ) from exc

    def _malformed(self, what: str, exc: Exception) -> UpstreamError:
        return UpstreamError(
            f"{self._upstream} returned a malformed {what} payload: {exc!r}",
            status_code=502,
            upstream=self._upstream,
        )
