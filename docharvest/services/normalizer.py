"""Slug, path-segment and front-matter normalisation for the page corpus."""

import re
from typing import List, Optional, Tuple
from urllib.parse import urlparse

import yaml

from docharvest.models.page import CodeBlock, Heading

# Topic identifiers on help-authoring sites ("doc_getting_started")
DOC_ID_PREFIX = "doc_"

_UNSAFE_CHARS_RE = re.compile(r'[<>:"/\\|?*\x00-\x1f]')
_HTML_SUFFIX_RE = re.compile(r"\.html?$", re.IGNORECASE)
_HEADING_LINE_RE = re.compile(r"^(#{1,6})\s+(.+?)(?:\s+#+)?\s*$")
_FENCE_RE = re.compile(r"^```([^\n`]*)\n(.*?)\n```[ \t]*$", re.MULTILINE | re.DOTALL)

FRONT_MATTER_DELIMITER = "---"

# Byte ceiling for a single directory name
MAX_SEGMENT_BYTES = 200


def truncate_utf8(text: str, max_bytes: int) -> str:
    """Cut *text* to at most *max_bytes* UTF-8 bytes without splitting a character."""
    encoded = text.encode("utf-8")
    if len(encoded) <= max_bytes:
        return text
    return encoded[:max_bytes].decode("utf-8", errors="ignore")


def url_to_slug(url: str, root_url: str) -> str:
    """Derive the page slug: the URL path relative to the crawl root."""
    path = urlparse(url).path
    root_path = urlparse(root_url).path
    if not path.startswith(root_path):
        return path.lstrip("/") or "index"
    return path[len(root_path):].lstrip("/") or "index"


def slug_filename(slug: str) -> str:
    """Map a slug to a file stem: ``doc_mvc_getting_started`` -> ``mvc-getting-started``."""
    segments = []
    for segment in slug.strip("/").split("/"):
        segment = _HTML_SUFFIX_RE.sub("", segment)
        if segment.lower().startswith(DOC_ID_PREFIX):
            segment = segment[len(DOC_ID_PREFIX):]
        if segment:
            segments.append(segment)
    name = "-".join(segments).replace("_", "-")
    name = _UNSAFE_CHARS_RE.sub("-", name)
    name = re.sub(r"-{2,}", "-", name).strip("-. ")
    return name or "index"


def normalize_label(value: str) -> str:
    """Comparison key for breadcrumb labels, titles and file stems."""
    return re.sub(r"[\W_]+", "-", value.lower()).strip("-")


def safe_segment(label: str) -> str:
    """Turn a breadcrumb label into a directory name that is safe on every platform."""
    segment = _UNSAFE_CHARS_RE.sub("-", label)
    segment = " ".join(segment.split()).strip(".").strip()
    segment = truncate_utf8(segment, MAX_SEGMENT_BYTES).rstrip(". ")
    if segment in ("", ".", ".."):
        return "_"
    return segment


def render_front_matter(metadata: dict, body: str) -> str:
    """Render one page record: a YAML header followed by the body text."""
    header = yaml.safe_dump(metadata, sort_keys=False, allow_unicode=True, width=1000)
    return f"{FRONT_MATTER_DELIMITER}\n{header}{FRONT_MATTER_DELIMITER}\n\n{body}\n"


def parse_front_matter(raw: str) -> Tuple[Optional[dict], str]:
    """Split a page record into ``(metadata, body)``.

    ``metadata`` is None when the header is absent or is not a valid YAML
    mapping; the body is still returned so callers can re-derive fields.
    """
    opening = FRONT_MATTER_DELIMITER + "\n"
    if not raw.startswith(opening):
        return None, raw.strip("\n")

    closing = raw.find("\n" + FRONT_MATTER_DELIMITER + "\n", len(opening) - 1)
    if closing == -1:
        return None, raw.strip("\n")

    header = raw[len(opening):closing + 1]
    body = raw[closing + len(FRONT_MATTER_DELIMITER) + 2:]
    if body.startswith("\n"):
        body = body[1:]
    if body.endswith("\n"):
        body = body[:-1]

    try:
        metadata = yaml.safe_load(header)
    except yaml.YAMLError:
        return None, body
    if not isinstance(metadata, dict):
        return None, body
    return metadata, body


def _outside_fences(text: str) -> List[str]:
    lines: List[str] = []
    in_fence = False
    for line in text.split("\n"):
        if line.startswith("```"):
            in_fence = not in_fence
            continue
        if not in_fence:
            lines.append(line)
    return lines


def derive_headings(text: str) -> List[Heading]:
    """Rebuild the heading outline from ``#`` lines outside code fences."""
    headings: List[Heading] = []
    for line in _outside_fences(text):
        match = _HEADING_LINE_RE.match(line)
        if match:
            headings.append(Heading(level=len(match.group(1)), text=match.group(2)))
    return headings


def derive_code_blocks(text: str) -> List[CodeBlock]:
    """Rebuild code blocks from the fenced sections of the body."""
    return [
        CodeBlock(language=match.group(1).strip(), code=match.group(2))
        for match in _FENCE_RE.finditer(text)
    ]


def derive_title(text: str) -> str:
    for heading in derive_headings(text):
        if heading.level == 1:
            return heading.text
    return ""
