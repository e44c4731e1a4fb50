from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Union
from urllib.parse import urljoin

import httpx

from transit_mcp.domain.exceptions import NetworkError
from transit_mcp.infrastructure.headers import ACCEPT_JSON, make_headers

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0  # seconds, applied to connect/read/write/pool

_REDIRECT_STATUSES = (301, 302)


@dataclass
class FetchResponse:
    content: bytes
    status_code: int
    headers: dict[str, str] = field(default_factory=dict)
    url: str = ""

    @property
    def etag(self) -> str | None:
        return self.headers.get("etag")

    @property
    def last_modified(self) -> str | None:
        return self.headers.get("last-modified")

    def raise_for_status(self) -> None:
        if self.status_code != 200:
            raise NetworkError(
                self.status_code,
                f"Upstream API error ({self.status_code}): {_redact(self.url)}",
            )


@dataclass
class NotModified:
    """The server confirmed the stored validators are still current."""


@dataclass
class Updated:
    content: bytes
    etag: str | None = None
    last_modified: str | None = None


ConditionalResult = Union[NotModified, Updated]


def create_http_client(timeout: float = DEFAULT_TIMEOUT) -> httpx.AsyncClient:
    """Shared AsyncClient: fixed timeouts, redirects followed."""
    return httpx.AsyncClient(timeout=httpx.Timeout(timeout), follow_redirects=True)


class ConditionalFetcher:
    """HTTP wrapper for ODPT JSON and GTFS ZIP downloads.

    The cookie jar is emptied after every response so requests never carry
    session state. ETag/Last-Modified values are returned to the caller; the
    fetcher itself stores nothing.
    """

    def __init__(self, http_client: httpx.AsyncClient) -> None:
        self._http = http_client

    async def fetch(
        self,
        url: str,
        auth_token: str | None = None,
        accept: str = ACCEPT_JSON,
    ) -> FetchResponse:
        """Plain GET. Redirects are followed by the client; status is not checked."""
        response = await self._send(url, make_headers(accept=accept, auth_token=auth_token))
        return self._to_fetch_response(response)

    async def fetch_conditional(
        self,
        url: str,
        etag: str | None = None,
        last_modified: str | None = None,
        auth_token: str | None = None,
        accept: str = ACCEPT_JSON,
    ) -> ConditionalResult:
        """Conditional GET.

        1. Send If-None-Match / If-Modified-Since for whichever validators exist.
        2. On a single 301/302 hop, repeat the same conditional request against
           the Location target so the validators and captured headers belong
           to the final URL.
        3. 304 -> NotModified, 200 -> Updated with the new validators.
        4. Any other status raises NetworkError with that status code.
        """
        headers = make_headers(
            accept=accept, auth_token=auth_token, etag=etag, last_modified=last_modified
        )
        response = await self._send(url, headers, follow_redirects=False)
        if response.status_code in _REDIRECT_STATUSES:
            location = response.headers.get("location")
            if not location:
                raise NetworkError(response.status_code, f"Redirect without Location from {_redact(url)}")
            target = urljoin(str(response.url), location)
            logger.debug("Following redirect %s -> %s", _redact(url), _redact(target))
            response = await self._send(target, headers, follow_redirects=False)

        if response.status_code == 304:
            logger.debug("Not modified: %s", _redact(url))
            return NotModified()
        self._raise_for_status(response)
        return Updated(
            content=response.content,
            etag=response.headers.get("etag"),
            last_modified=response.headers.get("last-modified"),
        )

    async def _send(
        self,
        url: str,
        headers: dict[str, str],
        follow_redirects: bool | None = None,
    ) -> httpx.Response:
        kwargs: dict[str, Any] = {"headers": headers}
        if follow_redirects is not None:
            kwargs["follow_redirects"] = follow_redirects
        try:
            response = await self._http.get(url, **kwargs)
        except httpx.HTTPError as exc:
            raise NetworkError(None, f"Request failed for {_redact(url)}: {exc}") from exc
        finally:
            self._http.cookies.clear()
        return response

    def _raise_for_status(self, response: httpx.Response) -> None:
        """Raise NetworkError for anything but 200."""
        if response.status_code == 404:
            raise NetworkError(404, f"Resource not found (404): {_redact(str(response.url))}")
        if response.status_code != 200:
            raise NetworkError(response.status_code)

    def _to_fetch_response(self, response: httpx.Response) -> FetchResponse:
        return FetchResponse(
            content=response.content,
            status_code=response.status_code,
            headers={k.lower(): v for k, v in response.headers.items()},
            url=str(response.url),
        )

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._http.aclose()


def _redact(url: str) -> str:
    """Strip the consumer key from a URL before it reaches a log line or error."""
    marker = "acl:consumerKey="
    index = url.find(marker)
    if index == -1:
        return url
    end = url.find("&", index)
    tail = "" if end == -1 else url[end:]
    return url[: index + len(marker)] + "***" + tail
