"""Tests for the HTTP front end.

The library dependency is overridden with one backed by a temporary corpus,
and the crawler is replaced with a mock, so no test touches the network.
"""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

from docharvest import config
from docharvest.main import app
from docharvest.models.index import SearchIndex
from docharvest.models.page import Heading, Page
from docharvest.routers.crawl import limiter as crawl_limiter
from docharvest.routers.pages import limiter as pages_limiter
from docharvest.routers.search import limiter as search_limiter
from docharvest.services.crawler import CrawlResult
from docharvest.services.fetcher import FetchResult
from docharvest.services.indexer import reindex
from docharvest.services.library import DocsLibrary, get_library
from docharvest.services.storage import CorpusStore

ROOT = "https://docs.example.com/guide/"

client = TestClient(app)


@pytest.fixture(autouse=True)
def reset_rate_limits():
    """Clear the slowapi in-memory counters before every test."""
    for limiter in (search_limiter, pages_limiter, crawl_limiter):
        limiter._storage.reset()
    yield
    app.dependency_overrides.clear()


def _use(library: DocsLibrary) -> DocsLibrary:
    app.dependency_overrides[get_library] = lambda: library
    return library


@pytest.fixture
def library(tmp_path):
    store = CorpusStore(tmp_path)
    store.save_page(
        Page(
            slug="doc_grid",
            url=ROOT + "doc_grid",
            title="Grid",
            headings=[Heading(level=1, text="Grid")],
            text="# Grid\n\nThe grid control.\n\n```cs\nvar grid = new Grid();\n```",
        )
    )
    store.save_page(Page(slug="doc_report", url=ROOT + "doc_report", title="Report", text="A report with a grid."))
    reindex(store)
    return _use(DocsLibrary(store, root_url=ROOT, fetch_on_miss=False, allowed_languages=[]))


@pytest.fixture
def empty_library(tmp_path):
    return _use(DocsLibrary(CorpusStore(tmp_path / "none"), root_url=ROOT, fetch_on_miss=False))


class TestHealth:
    def test_root(self):
        assert client.get("/").json() == {"ok": True}

    def test_health(self):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"ok": True}


class TestSearchEndpoint:
    def test_results(self, library):
        response = client.post("/search", json={"query": "grid"})
        assert response.status_code == 200
        body = response.json()
        assert body["tokens"] == ["grid"]
        assert [hit["slug"] for hit in body["results"]] == ["doc_grid", "doc_report"]
        assert body["results"][0]["headings"] == [{"level": 1, "text": "Grid"}]

    def test_limit(self, library):
        body = client.post("/search", json={"query": "grid", "limit": 1}).json()
        assert len(body["results"]) == 1

    def test_empty_query_rejected(self, library):
        assert client.post("/search", json={"query": ""}).status_code == 422

    def test_limit_out_of_range(self, library):
        assert client.post("/search", json={"query": "grid", "limit": 0}).status_code == 422

    def test_missing_corpus(self, empty_library):
        response = client.post("/search", json={"query": "grid"})
        assert response.status_code == 503
        assert "docharvest crawl" in response.json()["detail"]

    def test_rate_limit(self, library):
        statuses = [client.post("/search", json={"query": "grid"}).status_code for _ in range(61)]
        assert statuses[:60] == [200] * 60
        assert statuses[60] == 429


class TestPageEndpoint:
    def test_by_slug(self, library):
        response = client.post("/page", json={"slug": "doc_grid"})
        assert response.status_code == 200
        body = response.json()
        assert body["title"] == "Grid"
        assert body["code_blocks"] == [{"language": "cs", "code": "var grid = new Grid();"}]

    def test_by_url(self, library):
        response = client.post("/page", json={"url": ROOT + "doc_report"})
        assert response.json()["slug"] == "doc_report"

    def test_requires_lookup(self, library):
        assert client.post("/page", json={}).status_code == 400

    def test_unknown(self, library):
        response = client.post("/page", json={"slug": "doc_missing"})
        assert response.status_code == 404
        assert response.json()["detail"] == "Page not found: doc_missing"

    def test_fetch_on_miss_failure(self, library):
        library.fetch_on_miss = True
        library._fetch = AsyncMock(return_value=FetchResult(status="failed", url=ROOT + "doc_x", error="HTTP 500"))
        response = client.post("/page", json={"slug": "doc_x"})
        assert response.status_code == 502

    def test_missing_corpus(self, empty_library):
        assert client.post("/page", json={"slug": "doc_grid"}).status_code == 503


class TestExamplesAndExplain:
    def test_examples(self, library):
        response = client.post("/examples", json={"topic": "grid"})
        assert response.status_code == 200
        examples = response.json()["examples"]
        assert [(e["slug"], e["language"], e["code"]) for e in examples] == [
            ("doc_grid", "cs", "var grid = new Grid();")
        ]

    def test_explain(self, library):
        body = client.post("/explain", json={"name": "grid"}).json()
        assert body["page"]["slug"] == "doc_grid"
        assert [ref["slug"] for ref in body["related"]] == ["doc_report"]

    def test_explain_not_found(self, library):
        response = client.post("/explain", json={"name": "scheduler"})
        assert response.status_code == 404
        assert response.json()["detail"] == "No documentation found for: scheduler"


class TestCrawlEndpoint:
    def _result(self):
        index = SearchIndex(updated_at=datetime.now(timezone.utc), page_count=5, terms={})
        return CrawlResult(pages=[], index=index, fetched_count=2, reused_count=1, asset_count=1)

    def test_runs_crawl_into_library_store(self, library):
        with patch("docharvest.routers.crawl.run_crawl", new=AsyncMock(return_value=self._result())) as mock_crawl:
            response = client.post("/crawl", json={"only_new": True, "max_new_pages": 3})

        assert response.status_code == 200
        assert response.json() == {
            "root_url": config.BASE_URL,
            "pages_crawled": 0,
            "fetched_count": 2,
            "reused_count": 1,
            "asset_count": 1,
            "corpus_size": 5,
        }
        kwargs = mock_crawl.await_args.kwargs
        assert kwargs["only_new"] is True
        assert kwargs["force"] is False
        assert kwargs["max_new_pages"] == 3
        assert kwargs["store"] is library.store

    def test_custom_root(self, library):
        with patch("docharvest.routers.crawl.run_crawl", new=AsyncMock(return_value=self._result())) as mock_crawl:
            response = client.post("/crawl", json={"root_url": ROOT})
        assert response.json()["root_url"] == ROOT
        assert mock_crawl.await_args.kwargs["root_url"] == ROOT

    def test_invalidates_library_cache(self, library):
        library.load()
        with patch("docharvest.routers.crawl.run_crawl", new=AsyncMock(return_value=self._result())):
            client.post("/crawl", json={})
        assert library._summaries is None

    def test_failed_crawl_still_invalidates(self, library):
        library.load()
        safe_client = TestClient(app, raise_server_exceptions=False)
        with patch("docharvest.routers.crawl.run_crawl", new=AsyncMock(side_effect=OSError("disk full"))):
            response = safe_client.post("/crawl", json={})
        assert response.status_code == 500
        assert response.json() == {"detail": "An unexpected error occurred."}
        assert library._summaries is None

    def test_invalid_budget(self, library):
        assert client.post("/crawl", json={"max_pages": 0}).status_code == 422

    def test_rate_limit(self, library):
        with patch("docharvest.routers.crawl.run_crawl", new=AsyncMock(return_value=self._result())):
            statuses = [client.post("/crawl", json={}).status_code for _ in range(3)]
        assert statuses == [200, 200, 429]


class TestUnexpectedErrors:
    def test_generic_500(self, library):
        safe_client = TestClient(app, raise_server_exceptions=False)
        with patch.object(DocsLibrary, "search_docs", side_effect=RuntimeError("boom")):
            response = safe_client.post("/search", json={"query": "grid"})
        assert response.status_code == 500
        assert response.json() == {"detail": "An unexpected error occurred."}
