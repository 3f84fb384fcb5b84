import logging

from fastapi import APIRouter, Depends, Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from docharvest import config
from docharvest.models.crawl_request import CrawlRequest
from docharvest.models.crawl_response import CrawlResponse
from docharvest.services.crawler import run_crawl
from docharvest.services.library import DocsLibrary, get_library

logger = logging.getLogger(__name__)

limiter = Limiter(key_func=get_remote_address)
router = APIRouter()


@router.post(
    "/crawl",
    response_model=CrawlResponse,
    summary="Refresh the documentation corpus",
    description=(
        "Walks every page under the root URL, reusing cached pages when the "
        "site reports them unchanged, then rebuilds the search index over the "
        "whole corpus."
    ),
)
@limiter.limit("2/minute")
async def crawl_endpoint(
    request: Request,
    body: CrawlRequest,
    library: DocsLibrary = Depends(get_library),
) -> CrawlResponse:
    """Run one incremental crawl into the library's corpus."""
    root_url = str(body.root_url) if body.root_url else config.BASE_URL
    logger.info(
        "Crawl request received",
        extra={"root_url": root_url, "force": body.force, "only_new": body.only_new},
    )

    try:
        result = await run_crawl(
            force=body.force,
            only_new=body.only_new,
            root_url=root_url,
            max_pages=body.max_pages,
            max_new_pages=body.max_new_pages,
            allowed_languages=library.allowed_languages,
            store=library.store,
        )
    finally:
        library.invalidate()

    return CrawlResponse(
        root_url=root_url,
        pages_crawled=len(result.pages),
        fetched_count=result.fetched_count,
        reused_count=result.reused_count,
        asset_count=result.asset_count,
        corpus_size=result.index.page_count,
    )
