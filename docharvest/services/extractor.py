import re
from typing import Iterable, List, NamedTuple, Optional, Set
from urllib.parse import urldefrag, urljoin

from bs4 import BeautifulSoup, Tag
from markdownify import markdownify

from docharvest.models.page import CodeBlock, Heading
from docharvest.services.breadcrumbs import extract_breadcrumbs
from docharvest.services.cleaner import clean_markdown
from docharvest.services.codeblocks import (
    detect_language,
    element_code,
    is_code_container,
    normalize_languages,
    split_mixed_block,
    wrap_labeled_code,
)
from docharvest.services.sanitizer import sanitize

_HEADING_TAGS = ["h1", "h2", "h3", "h4", "h5", "h6"]

_SKIP_HREF_PREFIXES = ("#", "javascript:", "mailto:", "tel:", "data:")

_PLACEHOLDER_RE = re.compile(r"XCODEBLOCK(\d+)X")


class ExtractedDocument(NamedTuple):
    title: str
    breadcrumbs: List[str]
    headings: List[Heading]
    text: str
    code_blocks: List[CodeBlock]
    links: List[str]


class _CodeCollector:
    """Collects code samples and hands out placeholders for the body text."""

    def __init__(self, allowed_languages: Optional[Set[str]]):
        self.allowed_languages = allowed_languages
        self.blocks: List[CodeBlock] = []

    def accepts(self, language: str) -> bool:
        # Samples of unknown language are always kept
        return not self.allowed_languages or not language or language in self.allowed_languages

    def register(self, language: str, code: str) -> Optional[str]:
        if not code or not self.accepts(language):
            return None
        self.blocks.append(CodeBlock(language=language, code=code))
        return f"XCODEBLOCK{len(self.blocks) - 1}X"


def _collapse(text: str) -> str:
    return " ".join(text.split())


def _extract_title(soup: BeautifulSoup) -> str:
    for title_tag in soup.find_all("title"):
        text = _collapse(title_tag.get_text(" ", strip=True))
        if text:
            return text
    h1 = soup.find("h1")
    if h1:
        return _collapse(h1.get_text(" ", strip=True))
    return ""


def _extract_headings(soup: BeautifulSoup) -> List[Heading]:
    """Every h1-h6 in document order; headings with no text (icon anchors) are left out."""
    headings: List[Heading] = []
    for tag in soup.find_all(_HEADING_TAGS):
        text = _collapse(tag.get_text(" ", strip=True))
        if text:
            headings.append(Heading(level=int(tag.name[1]), text=text))
    return headings


def _extract_links(soup: BeautifulSoup, base_url: str) -> List[str]:
    seen: set = set()
    links: List[str] = []
    for a in soup.find_all("a", href=True):
        href = str(a["href"]).strip()
        if not href or href.lower().startswith(_SKIP_HREF_PREFIXES):
            continue
        abs_url = urldefrag(urljoin(base_url, href))[0]
        if abs_url and abs_url not in seen:
            seen.add(abs_url)
            links.append(abs_url)
    return links


def _find_main_content(soup: BeautifulSoup) -> Tag:
    """Return the most likely main-content element, falling back to <body>."""
    for selector in (
        "article",
        "main",
        '[role="main"]',
        "#content",
        ".content",
        ".main-content",
        ".page-content",
        ".topic-content",
    ):
        node = soup.select_one(selector)
        if node:
            return node
    return soup.find("body") or soup


def _resolve_urls(node: Tag, base_url: str) -> None:
    for a in node.find_all("a", href=True):
        href = str(a["href"]).strip()
        if href and not href.lower().startswith(_SKIP_HREF_PREFIXES):
            a["href"] = urljoin(base_url, href)
    for img in node.find_all("img"):
        src = img.get("src") or img.get("data-src")
        if src:
            img["src"] = urljoin(base_url, str(src).strip())


def _replacement(soup: BeautifulSoup, collector: _CodeCollector, samples) -> Tag:
    """Build the element that stands in for a code sample in the body tree."""
    wrapper = soup.new_tag("div")
    for language, code in samples:
        placeholder = collector.register(language, code)
        if placeholder is not None:
            paragraph = soup.new_tag("p")
            paragraph.string = placeholder
            wrapper.append(paragraph)
            continue
        # Filtered languages stay in the body as plain lines
        for line in code.split("\n"):
            if line.strip():
                paragraph = soup.new_tag("p")
                paragraph.string = line.strip()
                wrapper.append(paragraph)
    return wrapper


def _isolate_code(soup: BeautifulSoup, node: Tag, collector: _CodeCollector) -> None:
    # 1. Code-container classes ("code_content csharp")
    for container in node.find_all(is_code_container):
        if container.find_parent(is_code_container):
            continue
        language = detect_language(container)
        samples = split_mixed_block(element_code(container), language)
        container.replace_with(_replacement(soup, collector, samples))

    # 2. Preformatted blocks
    for pre in node.find_all("pre"):
        language = detect_language(pre)
        samples = split_mixed_block(element_code(pre), language)
        pre.replace_with(_replacement(soup, collector, samples))


def _to_markdown(node: Tag) -> str:
    return markdownify(
        str(node),
        heading_style="ATX",
        bullets="-",
        escape_underscores=False,
        escape_asterisks=False,
        escape_misc=False,
    )


def _substitute_code(text: str, blocks: List[CodeBlock]) -> tuple[str, List[CodeBlock]]:
    """Replace placeholders with fenced blocks; return blocks in body order."""
    ordered: List[CodeBlock] = []

    def fence(match: re.Match) -> str:
        block = blocks[int(match.group(1))]
        ordered.append(block)
        return f"\n```{block.language}\n{block.code}\n```\n"

    text = _PLACEHOLDER_RE.sub(fence, text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip(), ordered


def extract(
    html: str,
    base_url: str,
    allowed_languages: Optional[Iterable[str]] = None,
) -> ExtractedDocument:
    """Extract the structured document from *html*.

    Title, headings, breadcrumbs and links come from the untouched page; the
    body text is built from the sanitized main-content element, with every
    code sample turned into a fenced block tagged with its canonical
    language.  Languages outside *allowed_languages* (when given) stay in the
    body as plain text and are not reported as code blocks.
    """
    if not html or not html.strip():
        return ExtractedDocument("", [], [], "", [], [])

    raw_soup = BeautifulSoup(html, "lxml")
    title = _extract_title(raw_soup)
    headings = _extract_headings(raw_soup)
    breadcrumbs = extract_breadcrumbs(html, raw_soup)
    links = _extract_links(raw_soup, base_url)

    collector = _CodeCollector(normalize_languages(allowed_languages))
    clean_soup = sanitize(html)
    main_node = _find_main_content(clean_soup)
    _resolve_urls(main_node, base_url)
    _isolate_code(clean_soup, main_node, collector)

    markdown = clean_markdown(_to_markdown(main_node))
    markdown = wrap_labeled_code(markdown, collector.register, _PLACEHOLDER_RE)
    text, code_blocks = _substitute_code(markdown, collector.blocks)

    return ExtractedDocument(title, breadcrumbs, headings, text, code_blocks, links)
