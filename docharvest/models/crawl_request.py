from typing import Optional

from pydantic import BaseModel, Field, HttpUrl


class CrawlRequest(BaseModel):
    force: bool = Field(
        default=False,
        description="Refetch every visited URL unconditionally (overrides only_new).",
    )
    only_new: bool = Field(
        default=False,
        description="Reuse cached pages that already carry links without contacting the site.",
    )
    root_url: Optional[HttpUrl] = Field(
        default=None,
        description="Crawl root; defaults to the configured documentation base URL.",
    )
    max_pages: Optional[int] = Field(
        default=None,
        ge=1,
        description="Total pages considered this run (reused + fetched).",
    )
    max_new_pages: Optional[int] = Field(
        default=None,
        ge=1,
        description="Newly fetched resources this run; reused pages do not count.",
    )
