import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from docharvest.models.page import Page
from docharvest.models.search import PageRequest
from docharvest.services.library import DocsLibrary, PageFetchError, get_library

logger = logging.getLogger(__name__)

limiter = Limiter(key_func=get_remote_address)
router = APIRouter()


@router.post(
    "/page",
    response_model=Page,
    summary="Get one documentation page",
    description=(
        "Looks the page up by `url` or `slug`.  When fetch-on-miss is enabled a "
        "page that is not in the corpus yet is fetched, stored and indexed."
    ),
)
@limiter.limit("60/minute")
async def get_page(
    request: Request,
    body: PageRequest,
    library: DocsLibrary = Depends(get_library),
) -> Page:
    lookup = (body.url or body.slug or "").strip()
    if not lookup:
        raise HTTPException(status_code=400, detail='Provide "slug" or "url".')

    try:
        page = await library.get_page(slug=body.slug, url=body.url)
    except PageFetchError as exc:
        logger.warning("Fetch on miss failed for %s – %s", lookup, exc)
        raise HTTPException(
            status_code=502, detail=f"Page not found and fetch failed for: {lookup}. {exc}"
        )

    if page is None:
        raise HTTPException(status_code=404, detail=f"Page not found: {lookup}")
    return page
