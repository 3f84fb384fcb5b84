"""Tests for docharvest.services.breadcrumbs.extract_breadcrumbs."""

from docharvest.services.breadcrumbs import extract_breadcrumbs


class TestBreadcrumbContainers:
    def test_reads_anchor_texts_in_order(self):
        html = (
            '<div class="breadcrumbs">'
            '<a href="/a">ERP Components</a> &gt; <a href="/b">Xafari ASP.NET MVC</a>'
            "</div><h1>Getting Started</h1>"
        )
        assert extract_breadcrumbs(html) == ["ERP Components", "Xafari ASP.NET MVC"]

    def test_aria_label_container(self):
        html = '<nav aria-label="Breadcrumb"><a href="/">Docs</a><a href="/guide">Guide</a></nav>'
        assert extract_breadcrumbs(html) == ["Docs", "Guide"]

    def test_duplicates_removed(self):
        html = '<ol class="breadcrumb"><li><a>Docs</a></li><li><a>Docs</a></li><li><a>API</a></li></ol>'
        assert extract_breadcrumbs(html) == ["Docs", "API"]

    def test_whitespace_collapsed(self):
        html = '<div id="breadcrumb"><a>  Getting\n   Started </a></div>'
        assert extract_breadcrumbs(html) == ["Getting Started"]


class TestDocumentLinkFallback:
    def test_takes_doc_links_right_before_h1(self):
        html = (
            "<html><body>"
            '<p><a href="doc_home">Home</a> / '
            '<a href="doc_erp_components">ERP Components</a> / '
            '<a href="doc_xafari_mvc">Xafari ASP.NET MVC</a></p>'
            "<h1>Getting Started</h1><p>Body</p>"
            "</body></html>"
        )
        assert extract_breadcrumbs(html) == ["ERP Components", "Xafari ASP.NET MVC"]

    def test_ignores_links_without_doc_marker(self):
        html = '<a href="/about">About</a><a href="doc_guide">Guide</a><h1>Title</h1>'
        assert extract_breadcrumbs(html) == ["Guide"]

    def test_encoded_marker(self):
        html = '<a href="doc%5Fsetup">Setup</a><h1>Title</h1>'
        assert extract_breadcrumbs(html) == ["Setup"]

    def test_last_group_wins(self):
        filler = "<p>" + "x" * 600 + "</p>"
        html = (
            '<a href="doc_sidebar_one">Sidebar One</a>'
            f"{filler}"
            '<a href="doc_components">Components</a><a href="doc_grid">Grid</a>'
            "<h1>Grid Columns</h1>"
        )
        assert extract_breadcrumbs(html) == ["Components", "Grid"]

    def test_links_after_h1_not_used(self):
        html = '<h1>Title</h1><a href="doc_next">Next topic</a>'
        assert extract_breadcrumbs(html) == []

    def test_generic_labels_dropped(self):
        html = (
            '<a href="doc_general">General Information</a>'
            '<a href="doc_business">Business Components</a>'
            '<a href="doc_reports">Reports</a><h1>Report Designer</h1>'
        )
        assert extract_breadcrumbs(html) == ["Reports"]

    def test_no_breadcrumbs(self):
        assert extract_breadcrumbs("<h1>Lonely page</h1><p>text</p>") == []
        assert extract_breadcrumbs("") == []
