"""Incremental documentation crawler: BFS over every page under a root URL."""

import logging
import posixpath
from collections import deque
from datetime import datetime, timezone
from functools import partial
from typing import Dict, Iterable, List, NamedTuple, Optional
from urllib.parse import urljoin, urlparse

import httpx

from docharvest import config
from docharvest.models.index import SearchIndex
from docharvest.models.page import Page
from docharvest.services.codeblocks import filter_code_blocks, normalize_languages
from docharvest.services.extractor import extract
from docharvest.services.fetcher import (
    FetchFn,
    FetchResult,
    conditional_headers_for,
    fetch_resource,
)
from docharvest.services.indexer import reindex
from docharvest.services.normalizer import derive_code_blocks, url_to_slug
from docharvest.services.storage import CorpusStore

logger = logging.getLogger(__name__)

_SKIP_HREF_PREFIXES = ("mailto:", "javascript:", "tel:", "data:")

# Binary resources worth keeping next to the pages
FETCHABLE_ASSET_EXTENSIONS = {".pdf", ".png", ".jpg", ".jpeg", ".gif", ".webp", ".svg"}

_NON_DOCUMENT_EXTENSIONS = {
    # archives
    ".zip", ".rar", ".7z", ".gz", ".tgz", ".tar", ".bz2", ".xz", ".nupkg",
    # executables
    ".exe", ".msi", ".dmg", ".dll", ".bin", ".apk",
    # media
    ".mp3", ".mp4", ".avi", ".mov", ".wmv", ".wav", ".ogg", ".webm", ".flv", ".ico", ".bmp", ".tif", ".tiff",
    # fonts
    ".woff", ".woff2", ".ttf", ".eot", ".otf",
    # stylesheets and scripts
    ".css", ".js", ".map", ".json", ".xml", ".rss", ".atom",
    # office documents
    ".doc", ".docx", ".xls", ".xlsx", ".ppt", ".pptx", ".chm",
}


class CrawlResult(NamedTuple):
    pages: List[Page]  # this run's pages in visit order
    index: SearchIndex  # covers the whole corpus
    fetched_count: int
    reused_count: int
    asset_count: int


def _normalise(url: str) -> str:
    """Strip URL fragment so http://x.com/page#sec and http://x.com/page are the same."""
    return urlparse(url)._replace(fragment="").geturl()


def admit_link(href: Optional[str], base: str, root: str) -> Optional[str]:
    """Return the absolute form of *href* when it belongs to the crawl, else None.

    A link is admitted when it resolves to an http(s) URL on the root's host
    whose path starts with the root's path, and it does not point at a file
    type that is never documentation.  PDFs and images are admitted as
    assets.
    """
    if not href:
        return None
    href = href.strip()
    if not href or href.startswith("#") or href.lower().startswith(_SKIP_HREF_PREFIXES):
        return None

    try:
        absolute = _normalise(urljoin(base, href))
    except ValueError:
        return None

    parsed = urlparse(absolute)
    root_parsed = urlparse(root)
    if parsed.scheme not in ("http", "https"):
        return None
    if parsed.netloc.lower() != root_parsed.netloc.lower():
        return None
    if not parsed.path.startswith(root_parsed.path):
        return None

    extension = posixpath.splitext(parsed.path.lower())[1]
    if extension in _NON_DOCUMENT_EXTENSIONS and extension not in FETCHABLE_ASSET_EXTENSIONS:
        return None
    return absolute


def admitted_links(links: Iterable[str], base: str, root: str) -> List[str]:
    seen: set = set()
    admitted: List[str] = []
    for link in links:
        url = admit_link(link, base, root)
        if url and url not in seen:
            seen.add(url)
            admitted.append(url)
    return admitted


def _fresh_page(url: str, root_url: str, result: FetchResult, allowed, now: datetime) -> Page:
    document = extract(str(result.body), url, allowed)
    return Page(
        slug=url_to_slug(url, root_url),
        url=url,
        title=document.title or url,
        breadcrumbs=document.breadcrumbs,
        headings=document.headings,
        text=document.text,
        code_blocks=document.code_blocks,
        links=admitted_links(document.links, url, root_url),
        etag=result.etag,
        last_modified=result.last_modified,
        updated_at=now,
        last_checked_at=now,
    )


def _reused_page(cached: Page, result: FetchResult, allowed, now: datetime) -> Page:
    # The stored body is kept as is; only the code-block view follows the allow-list
    return cached.model_copy(
        update={
            "etag": result.etag or cached.etag,
            "last_modified": result.last_modified or cached.last_modified,
            "last_checked_at": now,
            "code_blocks": filter_code_blocks(derive_code_blocks(cached.text), allowed),
        }
    )


async def _traverse(
    fetch: FetchFn,
    store: CorpusStore,
    root_url: str,
    force: bool,
    only_new: bool,
    max_pages: int,
    max_new_pages: Optional[int],
    allowed,
) -> CrawlResult:
    prior: Dict[str, Page] = {page.url: page for page in store.load_pages()}

    frontier: deque = deque([_normalise(root_url)])
    visited: set = set()
    pages: List[Page] = []
    fetched_count = reused_count = asset_count = 0

    def session_open() -> bool:
        return max_new_pages is None or fetched_count + asset_count < max_new_pages

    while frontier and len(pages) < max_pages and session_open():
        url = frontier.popleft()
        if url in visited:
            continue
        visited.add(url)

        cached = prior.get(url)
        if force:
            result = await fetch(url, {})
        elif only_new and cached is not None and cached.links:
            result = FetchResult(
                status="not_modified",
                url=url,
                etag=cached.etag,
                last_modified=cached.last_modified,
            )
        else:
            result = await fetch(url, conditional_headers_for(cached))

        # A cached copy without links cannot drive traversal: fetch it again in full
        if result.status == "not_modified" and (cached is None or not cached.links):
            logger.debug("Crawl: refetching %s without validators", url)
            result = await fetch(url, {})

        now = datetime.now(timezone.utc)
        if result.status == "not_modified":
            if cached is None:
                logger.warning("Crawl: skipping %s – not modified but nothing cached", url)
                continue
            page = _reused_page(cached, result, allowed, now)
            reused_count += 1
        elif result.status == "ok" and result.is_binary:
            store.save_asset(url, result.body, result.content_type)
            asset_count += 1
            logger.info("Crawl: asset %s", url)
            continue
        elif result.status == "ok":
            page = _fresh_page(url, root_url, result, allowed, now)
            fetched_count += 1
        else:
            logger.warning("Crawl: skipping %s – %s", url, result.error)
            continue

        store.save_page(page)
        pages.append(page)
        logger.info("Crawl: %d/%d %s", len(pages), max_pages, url)

        for link in admitted_links(page.links, url, root_url):
            if link not in visited:
                frontier.append(link)

    _, index = reindex(store)
    logger.info(
        "Crawl: done – %d fetched, %d reused, %d assets, %d pages in corpus",
        fetched_count,
        reused_count,
        asset_count,
        index.page_count,
    )
    return CrawlResult(pages, index, fetched_count, reused_count, asset_count)


async def run_crawl(
    *,
    force: bool = False,
    only_new: bool = False,
    root_url: Optional[str] = None,
    max_pages: Optional[int] = None,
    max_new_pages: Optional[int] = None,
    allowed_languages: Optional[Iterable[str]] = None,
    store: Optional[CorpusStore] = None,
    client: Optional[httpx.AsyncClient] = None,
    fetch: Optional[FetchFn] = None,
) -> CrawlResult:
    """Crawl the documentation site under *root_url* into *store*.

    Each visited URL is handled one of three ways:

    * ``force`` – fetched unconditionally;
    * ``only_new`` with a cached page that carries links – reused without any
      network call;
    * otherwise – fetched with the cached validators, reusing the cached page
      on ``304 Not Modified``.

    A ``304`` for a page with no recorded links triggers one unconditional
    refetch.  *max_pages* bounds the pages handled this run (reused and
    fetched); *max_new_pages* bounds only newly fetched resources, ``0`` or
    None meaning unlimited.  After traversal the index is rebuilt over the
    complete corpus.

    The network is reached through *fetch* when given, else through
    :func:`fetch_resource` on *client* (a fresh client when None).
    """
    root_url = root_url or config.BASE_URL
    if max_pages is None:
        max_pages = config.MAX_PAGES
    if max_new_pages is None:
        max_new_pages = config.MAX_NEW_PAGES
    if max_new_pages is not None and max_new_pages <= 0:
        max_new_pages = None
    if allowed_languages is None:
        allowed_languages = config.CODE_LANGUAGES
    allowed = normalize_languages(allowed_languages)
    store = store or CorpusStore()

    logger.info(
        "Crawl: starting at %s (force=%s, only_new=%s, max_pages=%s, max_new_pages=%s)",
        root_url,
        force,
        only_new,
        max_pages,
        max_new_pages,
    )

    if fetch is not None:
        return await _traverse(fetch, store, root_url, force, only_new, max_pages, max_new_pages, allowed)
    if client is not None:
        fetch = partial(fetch_resource, client=client)
        return await _traverse(fetch, store, root_url, force, only_new, max_pages, max_new_pages, allowed)
    async with httpx.AsyncClient(follow_redirects=False, timeout=config.REQUEST_TIMEOUT) as own_client:
        fetch = partial(fetch_resource, client=own_client)
        return await _traverse(fetch, store, root_url, force, only_new, max_pages, max_new_pages, allowed)
