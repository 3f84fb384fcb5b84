import re

from bs4 import BeautifulSoup, Comment, Tag

_HIDDEN_STYLE_RE = re.compile(
    r"(display\s*:\s*none|visibility\s*:\s*hidden)", re.IGNORECASE
)

# Subtrees that never carry topic text
_REMOVE_TAGS = {
    # scripting and styling
    "script",
    "style",
    "noscript",
    "template",
    "link",
    "meta",
    # embedded media
    "iframe",
    "object",
    "embed",
    "svg",
    "canvas",
    # help-viewer chrome
    "nav",
    "aside",
    "form",
}

# Dropped only at site level; an article keeps its own header and footer
_PAGE_CHROME_TAGS = {"header", "footer"}
_CONTENT_ROOTS = ["article", "main"]

_JUNK_ATTRS = re.compile(r"^(style|on\w+)$", re.IGNORECASE)

# id/class tokens of help-viewer chrome, compared per token ("topic_toc" ->
# "topic", "toc") so "stock" is not mistaken for "toc"
_NOISE_KEYWORDS = {
    "nav",
    "navbar",
    "navigation",
    "sidenav",
    "menu",
    "sidebar",
    "breadcrumb",
    "breadcrumbs",
    "pagination",
    "pager",
    "toc",
    "search",
    "related",
    "header",
    "footer",
    "cookie",
}

_TOKEN_SPLIT_RE = re.compile(r"[-_\s]+")

_PROTECTED_TAGS = {"html", "body", "main", "article"}


def _attr_tokens(tag: Tag) -> set:
    values = [str(tag["id"])] if tag.get("id") else []
    values.extend(tag.get("class", []))
    tokens = set()
    for value in values:
        tokens.update(token for token in _TOKEN_SPLIT_RE.split(value.lower()) if token)
    return tokens


def _is_chrome(tag: Tag) -> bool:
    if not tag.attrs or tag.name in _PROTECTED_TAGS:
        return False
    return bool(_attr_tokens(tag) & _NOISE_KEYWORDS)


def _is_hidden(tag: Tag) -> bool:
    style = tag.get("style", "")
    return bool(style) and bool(_HIDDEN_STYLE_RE.search(style))


def _drop_structural_noise(soup: BeautifulSoup) -> None:
    for tag in soup.find_all(_REMOVE_TAGS):
        tag.decompose()
    for tag in soup.find_all(_PAGE_CHROME_TAGS):
        if not tag.decomposed and tag.find_parent(_CONTENT_ROOTS) is None:
            tag.decompose()
    for comment in soup.find_all(string=lambda text: isinstance(text, Comment)):
        comment.extract()


def sanitize(html: str) -> BeautifulSoup:
    """Parse *html* and strip everything that is not topic content.

    Scripts, embedded media, navigation, site-level header/footer, hidden
    elements and containers whose id or class marks them as viewer chrome
    are removed; ``style`` and ``on*`` attributes are dropped from the rest.
    """
    soup = BeautifulSoup(html, "lxml")
    _drop_structural_noise(soup)

    for tag in soup.find_all(True):
        if not isinstance(tag, Tag) or tag.decomposed:
            continue
        if _is_chrome(tag) or _is_hidden(tag):
            tag.decompose()
            continue
        for attr in [name for name in tag.attrs if _JUNK_ATTRS.match(name)]:
            del tag[attr]

    return soup
