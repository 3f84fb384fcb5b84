"""Conditional HTTP retrieval of documentation pages and binary assets."""

import logging
from typing import Awaitable, Callable, Dict, Literal, NamedTuple, Optional, Union
from urllib.parse import urljoin, urlparse

import httpx

from docharvest import config
from docharvest.models.page import Page

logger = logging.getLogger(__name__)

MAX_CONTENT_SIZE = 10 * 1024 * 1024  # 10 MB
MAX_REDIRECTS = 10
ALLOWED_SCHEMES = {"http", "https"}

_HTML_TYPES = {"text/html", "application/xhtml+xml"}
_BINARY_TYPES = {"application/pdf"}
_BINARY_PREFIXES = ("image/",)

FetchStatus = Literal["ok", "not_modified", "failed"]


class FetchResult(NamedTuple):
    status: FetchStatus
    url: str
    body: Union[str, bytes, None] = None
    content_type: str = ""
    etag: Optional[str] = None
    last_modified: Optional[str] = None
    error: Optional[str] = None

    @property
    def is_binary(self) -> bool:
        return isinstance(self.body, bytes)


# (url, headers) -> FetchResult; the crawler accepts any coroutine of this shape
FetchFn = Callable[[str, Dict[str, str]], Awaitable[FetchResult]]


def _validate_url(url: str) -> None:
    """Raise ValueError if *url* is not an absolute http(s) URL."""
    parsed = urlparse(url)

    if parsed.scheme not in ALLOWED_SCHEMES:
        raise ValueError(f"Scheme '{parsed.scheme}' is not allowed. Use http or https.")

    if not parsed.hostname:
        raise ValueError("URL must have a valid hostname.")


def _classify(content_type: str) -> Optional[str]:
    """Return ``"html"``, ``"binary"`` or None for an unsupported media type."""
    if content_type in _HTML_TYPES:
        return "html"
    if content_type in _BINARY_TYPES or content_type.startswith(_BINARY_PREFIXES):
        return "binary"
    return None


def conditional_headers_for(page: Optional[Page]) -> Dict[str, str]:
    """Build ``If-None-Match`` / ``If-Modified-Since`` from a cached page's validators."""
    headers: Dict[str, str] = {}
    if page is None:
        return headers
    if page.etag:
        headers["If-None-Match"] = page.etag
    if page.last_modified:
        headers["If-Modified-Since"] = page.last_modified
    return headers


async def _fetch(
    client: httpx.AsyncClient,
    url: str,
    headers: Dict[str, str],
    timeout: float,
) -> FetchResult:
    current_url = url
    for _ in range(MAX_REDIRECTS + 1):
        async with client.stream(
            "GET", current_url, headers=headers, timeout=timeout, follow_redirects=False
        ) as response:
            if response.status_code == 304:
                return FetchResult(
                    status="not_modified",
                    url=url,
                    etag=response.headers.get("etag"),
                    last_modified=response.headers.get("last-modified"),
                )

            if response.is_redirect:
                location = response.headers.get("location", "")
                next_url = urljoin(current_url, location)
                _validate_url(next_url)
                current_url = next_url
                continue

            if not response.is_success:
                return FetchResult(
                    status="failed", url=url, error=f"HTTP {response.status_code} for {url}"
                )

            content_type = response.headers.get("content-type", "").split(";")[0].strip().lower()
            kind = _classify(content_type)
            if kind is None:
                return FetchResult(
                    status="failed",
                    url=url,
                    content_type=content_type,
                    error=f"Unsupported content type: {content_type or '(none)'}",
                )

            content_length = response.headers.get("content-length")
            if content_length and content_length.isdigit() and int(content_length) > MAX_CONTENT_SIZE:
                raise RuntimeError("Response body exceeds the maximum allowed size.")

            chunks = []
            total = 0
            async for chunk in response.aiter_bytes():
                total += len(chunk)
                if total > MAX_CONTENT_SIZE:
                    raise RuntimeError("Response body exceeds the maximum allowed size.")
                chunks.append(chunk)
            raw = b"".join(chunks)

            body: Union[str, bytes]
            if kind == "binary":
                body = raw
            else:
                body = raw.decode(response.encoding or "utf-8", errors="replace")

            return FetchResult(
                status="ok",
                url=url,
                body=body,
                content_type=content_type,
                etag=response.headers.get("etag"),
                last_modified=response.headers.get("last-modified"),
            )

    raise RuntimeError("Too many redirects.")


async def fetch_resource(
    url: str,
    conditional_headers: Optional[Dict[str, str]] = None,
    *,
    client: Optional[httpx.AsyncClient] = None,
    timeout: float = config.REQUEST_TIMEOUT,
) -> FetchResult:
    """Fetch *url* once, honouring the given conditional headers.

    Redirects are followed manually so that every hop is validated. The
    outcome is always reported as a :class:`FetchResult`; network errors,
    timeouts, non-2xx statuses and unsupported media types come back with
    ``status="failed"`` instead of raising.
    """
    headers = {
        "User-Agent": config.USER_AGENT,
        "Accept-Language": "ru,en;q=0.8",
        **(conditional_headers or {}),
    }

    try:
        _validate_url(url)
        if client is None:
            async with httpx.AsyncClient(follow_redirects=False, timeout=timeout) as own_client:
                result = await _fetch(own_client, url, headers, timeout)
        else:
            result = await _fetch(client, url, headers, timeout)
    except httpx.TimeoutException:
        logger.warning("Fetcher: timeout after %ss for %s", timeout, url)
        return FetchResult(status="failed", url=url, error=f"Timed out after {timeout}s")
    except (ValueError, httpx.HTTPError, RuntimeError) as exc:
        logger.warning("Fetcher: error fetching %s – %s", url, exc)
        return FetchResult(status="failed", url=url, error=str(exc) or type(exc).__name__)

    if result.status == "failed":
        logger.warning("Fetcher: %s", result.error)
    return result
