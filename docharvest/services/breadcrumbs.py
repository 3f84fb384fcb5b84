"""Breadcrumb discovery for documentation pages.

Two strategies are tried in order:

1. **Breadcrumb containers** – any element whose class, id or ``aria-label``
   mentions "breadcrumb"; the texts of its anchors form the trail.
2. **Document-link proximity** – many help-authoring tools render the trail
   as a loose run of anchors right above the page ``<h1>``.  Anchors in a
   bounded window of the source before the first ``<h1>`` whose target
   carries a document-identifier marker (``doc_``) are grouped by the
   distance between them; the last group is the trail.  Generic top-level
   entries ("Home", ...) are dropped.
"""

import re
from typing import List, Optional

from bs4 import BeautifulSoup, Tag

_BREADCRUMB_RE = re.compile(r"breadcrumb", re.IGNORECASE)

# Substrings of an href that identify a documentation topic
DOC_ID_MARKERS = ("doc_", "doc%5f")

# Characters of source scanned before the first <h1>
WINDOW_CHARS = 6000

# Anchors further apart than this start a new group
GROUP_GAP_CHARS = 400

GENERIC_LABELS = {
    "home",
    "general information",
    "what's new in help",
    "general components",
    "business components",
}


def _unique(items: List[str]) -> List[str]:
    seen: set = set()
    unique: List[str] = []
    for item in items:
        if item not in seen:
            seen.add(item)
            unique.append(item)
    return unique


def _anchor_text(anchor: Tag) -> str:
    return " ".join(anchor.get_text(" ", strip=True).split())


def _is_breadcrumb_container(tag: Tag) -> bool:
    if tag.name == "a":
        return False
    values = list(tag.get("class", []))
    values.append(str(tag.get("id", "")))
    values.append(str(tag.get("aria-label", "")))
    return any(_BREADCRUMB_RE.search(value) for value in values)


def _from_containers(soup: BeautifulSoup) -> List[str]:
    crumbs: List[str] = []
    for container in soup.find_all(_is_breadcrumb_container):
        if container.find_parent(_is_breadcrumb_container):
            continue
        for anchor in container.find_all("a"):
            text = _anchor_text(anchor)
            if text:
                crumbs.append(text)
    return _unique(crumbs)


def _line_offsets(html: str) -> List[int]:
    offsets = [0]
    offsets.extend(match.end() for match in re.finditer("\n", html))
    return offsets


def _source_offset(tag: Tag, offsets: List[int]) -> Optional[int]:
    if tag.sourceline is None or tag.sourcepos is None:
        return None
    return offsets[tag.sourceline - 1] + tag.sourcepos


def _from_document_links(html: str) -> List[str]:
    # html.parser records source positions; lxml does not
    soup = BeautifulSoup(html, "html.parser")
    offsets = _line_offsets(html)

    start, end = 0, len(html)
    h1 = soup.find("h1")
    if h1 is not None:
        h1_offset = _source_offset(h1, offsets)
        if h1_offset is not None:
            start, end = max(0, h1_offset - WINDOW_CHARS), h1_offset

    matches = []
    for anchor in soup.find_all("a", href=True):
        position = _source_offset(anchor, offsets)
        if position is None or position < start or position >= end:
            continue
        href = str(anchor["href"]).lower()
        if not any(marker in href for marker in DOC_ID_MARKERS):
            continue
        text = _anchor_text(anchor)
        if text:
            matches.append((position, text))

    if not matches:
        return []

    groups: List[List[str]] = [[]]
    previous = None
    for position, text in matches:
        if previous is not None and position - previous > GROUP_GAP_CHARS:
            groups.append([])
        groups[-1].append(text)
        previous = position

    trail = [text for text in groups[-1] if text.lower() not in GENERIC_LABELS]
    return _unique(trail)


def extract_breadcrumbs(html: str, soup: Optional[BeautifulSoup] = None) -> List[str]:
    """Return the page's category trail, root first, or an empty list."""
    if not html:
        return []
    if soup is None:
        soup = BeautifulSoup(html, "lxml")
    crumbs = _from_containers(soup)
    if crumbs:
        return crumbs
    return _from_document_links(html)
