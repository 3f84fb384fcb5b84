from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

# Characters of body text kept in a summary record
SUMMARY_EXCERPT_LENGTH = 500


class Heading(BaseModel):
    level: int = Field(ge=1, le=6)
    text: str


class CodeBlock(BaseModel):
    language: str = ""  # canonical short tag, empty when undetected
    code: str


class Page(BaseModel):
    """One harvested documentation page."""

    slug: str
    url: str
    title: str
    breadcrumbs: List[str] = []
    headings: List[Heading] = []
    text: str = ""  # markdown body with fenced code blocks
    code_blocks: List[CodeBlock] = []
    links: List[str] = []  # admitted same-site URLs
    etag: Optional[str] = None
    last_modified: Optional[str] = None
    updated_at: Optional[datetime] = None
    last_checked_at: Optional[datetime] = None


class PageSummary(BaseModel):
    """Lightweight projection of :class:`Page` for listing and search."""

    slug: str
    url: str
    title: str
    breadcrumbs: List[str] = []
    headings: List[Heading] = []
    excerpt: str = ""
    path: Optional[str] = None  # relative to the pages root
    updated_at: Optional[datetime] = None

    @classmethod
    def from_page(cls, page: Page, path: Optional[str] = None) -> "PageSummary":
        return cls(
            slug=page.slug,
            url=page.url,
            title=page.title,
            breadcrumbs=page.breadcrumbs,
            headings=page.headings,
            excerpt=page.text[:SUMMARY_EXCERPT_LENGTH],
            path=path,
            updated_at=page.updated_at,
        )
