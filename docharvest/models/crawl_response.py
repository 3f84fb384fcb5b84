from pydantic import BaseModel


class CrawlResponse(BaseModel):
    root_url: str
    pages_crawled: int
    fetched_count: int
    reused_count: int
    asset_count: int
    corpus_size: int
