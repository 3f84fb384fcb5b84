"""Tests for docharvest.services.crawler."""

import asyncio
import logging

import httpx
import pytest

from docharvest.models.page import Page
from docharvest.services.crawler import admit_link, admitted_links, run_crawl
from docharvest.services.fetcher import FetchResult
from docharvest.services.storage import CorpusStore

ROOT = "https://docs.example.com/guide/"
PAGE_A = ROOT + "doc_a"
PAGE_B = ROOT + "doc_b"

ROOT_HTML = """
<html><head><title>Guide</title></head><body>
<h1>Guide</h1>
<p>Start with <a href="doc_a">Topic A</a>.</p>
<pre class="language-csharp">var grid = new Grid();</pre>
</body></html>
"""

A_HTML = """
<html><head><title>Topic A</title></head><body>
<h1>Topic A</h1>
<p>Back to the <a href="./">guide</a>.</p>
</body></html>
"""


def _html(title: str, *links: str) -> str:
    anchors = "".join(f'<a href="{link}">{link}</a> ' for link in links)
    return f"<html><head><title>{title}</title></head><body><h1>{title}</h1><p>{anchors}</p></body></html>"


class FakeSite:
    """Async stand-in for fetch_resource; records every call."""

    def __init__(self, resources, unchanged=()):
        self.resources = resources
        self.unchanged = set(unchanged)
        self.calls = []

    async def __call__(self, url, headers):
        self.calls.append((url, dict(headers)))
        if headers and url in self.unchanged:
            return FetchResult(status="not_modified", url=url, etag='"v1"')
        body = self.resources.get(url)
        if body is None:
            return FetchResult(status="failed", url=url, error=f"HTTP 404 for {url}")
        if isinstance(body, bytes):
            return FetchResult(status="ok", url=url, body=body, content_type="application/pdf")
        return FetchResult(status="ok", url=url, body=body, content_type="text/html", etag='"v1"')


def _crawl(store, site, **kwargs):
    kwargs.setdefault("root_url", ROOT)
    kwargs.setdefault("allowed_languages", [])
    return asyncio.run(run_crawl(store=store, fetch=site, **kwargs))


def _cached_root(links, text="# Guide\n\nCached body"):
    return Page(
        slug="index",
        url=ROOT,
        title="Guide",
        text=text,
        links=links,
        etag='"v1"',
    )


@pytest.fixture
def store(tmp_path):
    return CorpusStore(tmp_path)


class TestAdmitLink:
    def test_relative_link_resolved(self):
        assert admit_link("doc_a", ROOT, ROOT) == PAGE_A

    def test_fragment_stripped(self):
        assert admit_link("doc_a#section", ROOT, ROOT) == PAGE_A

    def test_rejected_schemes_and_fragments(self):
        for href in ("", "#top", "mailto:a@b.c", "javascript:void(0)", "tel:123", "data:text/plain,x", None):
            assert admit_link(href, ROOT, ROOT) is None

    def test_other_host_or_path_rejected(self):
        assert admit_link("https://other.example.com/guide/doc_a", ROOT, ROOT) is None
        assert admit_link("/blog/post", ROOT, ROOT) is None

    def test_non_document_extensions(self):
        assert admit_link("files/setup.zip", ROOT, ROOT) is None
        assert admit_link("styles/site.css", ROOT, ROOT) is None
        assert admit_link("files/manual.pdf", ROOT, ROOT) == ROOT + "files/manual.pdf"
        assert admit_link("img/shot.png", ROOT, ROOT) == ROOT + "img/shot.png"

    def test_admitted_links_deduplicated(self):
        assert admitted_links(["doc_a", "doc_a#x", "mailto:x@y.z", "doc_b"], ROOT, ROOT) == [PAGE_A, PAGE_B]


class TestFreshCrawl:
    def test_two_page_site(self, store):
        site = FakeSite({ROOT: ROOT_HTML, PAGE_A: A_HTML})
        result = _crawl(store, site)

        assert result.fetched_count == 2
        assert result.reused_count == 0
        assert [page.url for page in result.pages] == [ROOT, PAGE_A]
        assert [page.slug for page in result.pages] == ["index", "doc_a"]
        assert result.index.page_count == 2
        assert [url for url, _ in site.calls] == [ROOT, PAGE_A]

    def test_page_fields(self, store):
        result = _crawl(store, FakeSite({ROOT: ROOT_HTML, PAGE_A: A_HTML}))
        root = result.pages[0]
        assert root.title == "Guide"
        assert root.links == [PAGE_A]
        assert [(b.language, b.code) for b in root.code_blocks] == [("cs", "var grid = new Grid();")]
        assert root.etag == '"v1"'
        assert root.updated_at is not None
        assert store.load_page("doc_a").title == "Topic A"

    def test_summaries_and_index_written(self, store):
        _crawl(store, FakeSite({ROOT: ROOT_HTML, PAGE_A: A_HTML}))
        assert [s.slug for s in store.load_summaries()] == ["doc_a", "index"]
        assert "grid" in store.load_index().terms

    def test_failed_url_skipped(self, store, caplog):
        site = FakeSite({ROOT: _html("Guide", "doc_a", "doc_b"), PAGE_B: _html("B")})
        with caplog.at_level(logging.WARNING):
            result = _crawl(store, site)
        assert [page.url for page in result.pages] == [ROOT, PAGE_B]
        assert result.fetched_count == 2
        assert "skipping" in caplog.text

    def test_title_falls_back_to_url(self, store):
        result = _crawl(store, FakeSite({ROOT: "<html><body><p>No heading here</p></body></html>"}))
        assert result.pages[0].title == ROOT

    def test_binary_asset_saved(self, store):
        pdf = ROOT + "files/manual.pdf"
        site = FakeSite({ROOT: _html("Guide", "files/manual.pdf"), pdf: b"%PDF-1.4"})
        result = _crawl(store, site)
        assert result.asset_count == 1
        assert [page.url for page in result.pages] == [ROOT]
        saved = store.assets_dir / "docs.example.com" / "guide" / "files" / "manual.pdf"
        assert saved.read_bytes() == b"%PDF-1.4"

    def test_index_covers_untouched_pages(self, store):
        store.save_page(Page(slug="doc_old", url=ROOT + "doc_old", title="Old", text="legacy grid"))
        result = _crawl(store, FakeSite({ROOT: ROOT_HTML, PAGE_A: A_HTML}))
        assert len(result.pages) == 2
        assert result.index.page_count == 3

    def test_through_httpx_client(self, store):
        def handler(request):
            body = {ROOT: ROOT_HTML, PAGE_A: A_HTML}.get(str(request.url))
            if body is None:
                return httpx.Response(404)
            return httpx.Response(200, headers={"content-type": "text/html"}, content=body.encode("utf-8"))

        async def go():
            async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
                return await run_crawl(root_url=ROOT, store=store, client=client, allowed_languages=[])

        result = asyncio.run(go())
        assert result.fetched_count == 2


class TestCacheDecisions:
    def test_only_new_reuses_without_network(self, store):
        store.save_page(_cached_root([PAGE_A]))
        site = FakeSite({ROOT: ROOT_HTML})
        result = _crawl(store, site, only_new=True, max_pages=1)

        assert site.calls == []
        assert result.reused_count == 1
        assert result.fetched_count == 0
        assert len(result.pages) == 1
        assert result.pages[0].text == "# Guide\n\nCached body"
        assert result.pages[0].last_checked_at is not None

    def test_not_modified_reuses_cached_page(self, store):
        store.save_page(_cached_root([PAGE_A]))
        site = FakeSite({ROOT: ROOT_HTML, PAGE_A: A_HTML}, unchanged={ROOT})
        result = _crawl(store, site)

        assert site.calls[0] == (ROOT, {"If-None-Match": '"v1"'})
        assert [url for url, _ in site.calls].count(ROOT) == 1
        assert result.reused_count == 1
        assert result.fetched_count == 1
        assert [page.url for page in result.pages] == [ROOT, PAGE_A]

    def test_not_modified_without_links_refetches_once(self, store):
        store.save_page(_cached_root([]))
        site = FakeSite({ROOT: ROOT_HTML}, unchanged={ROOT})
        result = _crawl(store, site, max_pages=1)

        assert site.calls == [(ROOT, {"If-None-Match": '"v1"'}), (ROOT, {})]
        assert result.fetched_count == 1
        assert result.reused_count == 0
        assert result.pages[0].links == [PAGE_A]

    def test_force_overrides_only_new(self, store):
        store.save_page(_cached_root([PAGE_A]))
        site = FakeSite({ROOT: ROOT_HTML}, unchanged={ROOT})
        result = _crawl(store, site, force=True, only_new=True, max_pages=1)

        assert site.calls == [(ROOT, {})]
        assert result.fetched_count == 1
        assert result.reused_count == 0

    def test_reused_code_blocks_follow_allow_list(self, store):
        body = "# Guide\n\n```vb\nDim a\n```\n\n```cs\nint a;\n```"
        store.save_page(_cached_root([PAGE_A], text=body))
        result = _crawl(store, FakeSite({}), only_new=True, max_pages=1, allowed_languages=["C#"])

        page = result.pages[0]
        assert page.text == body
        assert [(b.language, b.code) for b in page.code_blocks] == [("cs", "int a;")]


class TestBudgets:
    def _site(self):
        return FakeSite(
            {
                ROOT: _html("Guide", "doc_a", "doc_b", "doc_c"),
                PAGE_A: _html("A"),
                PAGE_B: _html("B"),
                ROOT + "doc_c": _html("C"),
            }
        )

    def test_total_budget(self, store):
        result = _crawl(store, self._site(), max_pages=2)
        assert len(result.pages) == 2

    def test_session_budget(self, store):
        site = self._site()
        result = _crawl(store, site, max_new_pages=2)
        assert result.fetched_count == 2
        assert len(site.calls) == 2

    def test_zero_session_budget_is_unlimited(self, store):
        result = _crawl(store, self._site(), max_new_pages=0)
        assert result.fetched_count == 4

    def test_reused_pages_do_not_consume_session_budget(self, store):
        store.save_page(_cached_root([PAGE_A, PAGE_B]))
        site = FakeSite({PAGE_A: _html("A"), PAGE_B: _html("B")})
        result = _crawl(store, site, only_new=True, max_new_pages=1)

        assert result.reused_count == 1
        assert result.fetched_count == 1
        assert [page.url for page in result.pages] == [ROOT, PAGE_A]

    def test_assets_count_toward_session_budget(self, store):
        site = FakeSite(
            {
                ROOT: _html("Guide", "files/a.pdf", "doc_a"),
                ROOT + "files/a.pdf": b"%PDF",
                PAGE_A: _html("A"),
            }
        )
        result = _crawl(store, site, max_new_pages=2)
        assert result.fetched_count + result.asset_count == 2
        assert [url for url, _ in site.calls] == [ROOT, ROOT + "files/a.pdf"]


class TestIdempotence:
    def test_forced_recrawl_reproduces_content(self, store):
        site = FakeSite({ROOT: ROOT_HTML, PAGE_A: A_HTML})
        first = _crawl(store, site, force=True)
        second = _crawl(store, site, force=True)

        def content(result):
            return [(p.slug, p.text, p.headings, p.code_blocks) for p in result.pages]

        assert content(first) == content(second)
        assert len(store.load_pages()) == 2
