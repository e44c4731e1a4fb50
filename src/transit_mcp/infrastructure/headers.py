from __future__ import annotations

USER_AGENT = "transit-mcp/0.1 (+https://developer.odpt.org)"

ACCEPT_JSON = "application/json"
ACCEPT_ZIP = "application/zip"


def make_headers(
    accept: str = ACCEPT_JSON,
    auth_token: str | None = None,
    etag: str | None = None,
    last_modified: str | None = None,
) -> dict[str, str]:
    """Return request headers for the ODPT API and GTFS file endpoints.

    auth_token is sent verbatim as the Authorization header. The validators
    turn the request into a conditional GET when a previous response left
    an ETag and/or Last-Modified value.
    """
    headers = {
        "Accept": accept,
        "User-Agent": USER_AGENT,
        "Cache-Control": "no-cache",
    }
    if auth_token:
        headers["Authorization"] = auth_token
    if etag:
        headers["If-None-Match"] = etag
    if last_modified:
        headers["If-Modified-Since"] = last_modified
    return headers
