from typing import List, Optional

from pydantic import BaseModel, Field

from docharvest.models.page import Heading


class SearchRequest(BaseModel):
    query: str = Field(min_length=1, description="Free-text query.")
    limit: int = Field(default=5, ge=1, le=50, description="Maximum results (1–50).")


class SearchHit(BaseModel):
    page_id: int
    slug: str
    title: str
    url: str
    score: int
    excerpt: str
    headings: List[Heading] = []


class SearchResponse(BaseModel):
    query: str
    tokens: List[str]
    total_matches: int
    results: List[SearchHit]


class ExamplesRequest(BaseModel):
    topic: str = Field(min_length=1)
    limit: int = Field(default=5, ge=1, le=50)


class CodeExample(BaseModel):
    slug: str
    title: str
    url: str
    language: str
    code: str


class ExamplesResponse(BaseModel):
    topic: str
    examples: List[CodeExample]


class ExplainRequest(BaseModel):
    name: str = Field(min_length=1, description="Concept to explain.")


class PageRef(BaseModel):
    slug: str
    title: str
    url: str


class ExplainResponse(BaseModel):
    concept: str
    summary: str
    page: PageRef
    related: List[PageRef]


class PageRequest(BaseModel):
    slug: Optional[str] = None
    url: Optional[str] = None
