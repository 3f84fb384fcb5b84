"""Read access to a harvested corpus for the HTTP front end and the CLI."""

import logging
from datetime import datetime, timezone
from functools import lru_cache
from typing import Iterable, List, Optional, Tuple
from urllib.parse import urljoin

from docharvest import config
from docharvest.models.index import SearchIndex
from docharvest.models.page import Page, PageSummary
from docharvest.models.search import (
    CodeExample,
    ExamplesResponse,
    ExplainResponse,
    PageRef,
    SearchResponse,
)
from docharvest.services.crawler import admitted_links
from docharvest.services.extractor import extract
from docharvest.services.fetcher import FetchFn, fetch_resource
from docharvest.services.indexer import reindex
from docharvest.services.normalizer import url_to_slug
from docharvest.services.search import DEFAULT_LIMIT, build_excerpt, search
from docharvest.services.storage import CorpusMissingError, CorpusStore

logger = logging.getLogger(__name__)

EXPLAIN_RESULTS = 3


class PageFetchError(RuntimeError):
    """A page missing from the corpus could not be fetched on demand."""


def _ref(item) -> PageRef:
    return PageRef(slug=item.slug, title=item.title, url=item.url)


class DocsLibrary:
    """Cached summaries and index over a :class:`CorpusStore`.

    The summaries and the index are read once and kept until
    :meth:`invalidate` is called; full pages are always read from disk.
    """

    def __init__(
        self,
        store: Optional[CorpusStore] = None,
        *,
        root_url: Optional[str] = None,
        fetch_on_miss: Optional[bool] = None,
        allowed_languages: Optional[Iterable[str]] = None,
        fetch: Optional[FetchFn] = None,
    ):
        self.store = store or CorpusStore()
        self.root_url = root_url or config.BASE_URL
        self.fetch_on_miss = config.FETCH_ON_MISS if fetch_on_miss is None else fetch_on_miss
        self.allowed_languages = (
            config.CODE_LANGUAGES if allowed_languages is None else list(allowed_languages)
        )
        self._fetch = fetch or fetch_resource
        self._summaries: Optional[List[PageSummary]] = None
        self._index: Optional[SearchIndex] = None

    def invalidate(self) -> None:
        self._summaries = None
        self._index = None

    def load(self) -> Tuple[List[PageSummary], SearchIndex]:
        """Summaries and index, raising CorpusMissingError when either is absent."""
        if self._summaries is None or self._index is None:
            self._summaries = self.store.load_summaries()
            self._index = self.store.load_index()
        return self._summaries, self._index

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def resolve(self, slug: Optional[str] = None, url: Optional[str] = None) -> Optional[PageSummary]:
        """Find a page summary by URL (fragment ignored) or by slug."""
        summaries, _ = self.load()
        if url:
            target = url.strip().split("#")[0]
            for summary in summaries:
                if summary.url == target:
                    return summary
            slug = slug or url_to_slug(target, self.root_url)
        if slug:
            target = slug.strip().lstrip("/")
            for summary in summaries:
                if summary.slug == target:
                    return summary
        return None

    def page_url(self, slug: Optional[str] = None, url: Optional[str] = None) -> str:
        if url:
            return url.strip().split("#")[0]
        return urljoin(self.root_url, (slug or "").strip().lstrip("/"))

    async def get_page(self, slug: Optional[str] = None, url: Optional[str] = None) -> Optional[Page]:
        """Return the full page, fetching and storing it when allowed and absent."""
        if not (slug or url):
            raise ValueError('Provide "slug" or "url".')

        try:
            summary = self.resolve(slug=slug, url=url)
        except CorpusMissingError:
            if not self.fetch_on_miss:
                raise
            summary = None
        if summary is not None:
            page = self.store.load_page(summary.slug)
            if page is not None:
                return page

        if not self.fetch_on_miss:
            return None
        return await self.fetch_and_store(self.page_url(slug, url))

    async def fetch_and_store(self, url: str) -> Page:
        """Fetch one page, add it to the corpus and rebuild the index."""
        logger.info("Library: fetching missing page %s", url)
        result = await self._fetch(url, {})
        if result.status != "ok" or result.is_binary:
            raise PageFetchError(result.error or f"No HTML document at {url}")

        document = extract(str(result.body), url, self.allowed_languages)
        now = datetime.now(timezone.utc)
        page = Page(
            slug=url_to_slug(url, self.root_url),
            url=url,
            title=document.title or url,
            breadcrumbs=document.breadcrumbs,
            headings=document.headings,
            text=document.text,
            code_blocks=document.code_blocks,
            links=admitted_links(document.links, url, self.root_url),
            etag=result.etag,
            last_modified=result.last_modified,
            updated_at=now,
            last_checked_at=now,
        )
        self.store.save_page(page)
        pages, self._index = reindex(self.store)
        self._summaries = [PageSummary.from_page(stored) for stored in pages]
        logger.info("Library: stored %s", page.slug)
        return page

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def search_docs(self, query: str, limit: int = DEFAULT_LIMIT) -> SearchResponse:
        """Search, with excerpts and headings taken from the full page files."""
        summaries, index = self.load()
        response = search(index, summaries, query, limit)
        enriched = []
        for hit in response.results:
            page = self.store.load_page(hit.slug)
            if page is not None:
                hit = hit.model_copy(
                    update={
                        "excerpt": build_excerpt(page.text, response.tokens),
                        "headings": page.headings,
                    }
                )
            enriched.append(hit)
        return response.model_copy(update={"results": enriched})

    def get_examples(self, topic: str, limit: int = DEFAULT_LIMIT) -> ExamplesResponse:
        """Code blocks from the best matching pages, at most *limit* of them."""
        summaries, index = self.load()
        response = search(index, summaries, topic, limit)
        examples: List[CodeExample] = []
        for hit in response.results:
            page = self.store.load_page(hit.slug)
            if page is None:
                continue
            for block in page.code_blocks:
                examples.append(
                    CodeExample(
                        slug=page.slug,
                        title=page.title,
                        url=page.url,
                        language=block.language,
                        code=block.code,
                    )
                )
                if len(examples) >= limit:
                    return ExamplesResponse(topic=topic, examples=examples)
        return ExamplesResponse(topic=topic, examples=examples)

    def explain(self, name: str) -> Optional[ExplainResponse]:
        """Summary of the best page for *name* plus the next best pages, or None."""
        summaries, index = self.load()
        response = search(index, summaries, name, EXPLAIN_RESULTS)
        if not response.results:
            return None

        primary = response.results[0]
        page = self.store.load_page(primary.slug)
        summary = build_excerpt(page.text, response.tokens) if page is not None else primary.excerpt
        return ExplainResponse(
            concept=name,
            summary=summary,
            page=_ref(primary),
            related=[_ref(hit) for hit in response.results[1:]],
        )


@lru_cache(maxsize=None)
def get_library() -> DocsLibrary:
    """Process-wide library over the configured data directory."""
    return DocsLibrary()
