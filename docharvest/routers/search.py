import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from docharvest.models.search import (
    ExamplesRequest,
    ExamplesResponse,
    ExplainRequest,
    ExplainResponse,
    SearchRequest,
    SearchResponse,
)
from docharvest.services.library import DocsLibrary, get_library

logger = logging.getLogger(__name__)

limiter = Limiter(key_func=get_remote_address)
router = APIRouter()


@router.post(
    "/search",
    response_model=SearchResponse,
    summary="Search the documentation corpus",
    description=(
        "Ranks pages by the summed occurrence counts of the query terms and "
        "returns an excerpt around the first match of each page."
    ),
)
@limiter.limit("60/minute")
async def search_docs(
    request: Request,
    body: SearchRequest,
    library: DocsLibrary = Depends(get_library),
) -> SearchResponse:
    logger.info("Search request received", extra={"query": body.query, "limit": body.limit})
    return library.search_docs(body.query, body.limit)


@router.post(
    "/examples",
    response_model=ExamplesResponse,
    summary="Code examples for a topic",
)
@limiter.limit("60/minute")
async def get_examples(
    request: Request,
    body: ExamplesRequest,
    library: DocsLibrary = Depends(get_library),
) -> ExamplesResponse:
    """Return the code blocks of the pages that best match *topic*."""
    return library.get_examples(body.topic, body.limit)


@router.post(
    "/explain",
    response_model=ExplainResponse,
    summary="Explain a documentation concept",
)
@limiter.limit("60/minute")
async def explain_concept(
    request: Request,
    body: ExplainRequest,
    library: DocsLibrary = Depends(get_library),
) -> ExplainResponse:
    """Summarise the best page for *name* and list the closest related pages."""
    explanation = library.explain(body.name)
    if explanation is None:
        raise HTTPException(status_code=404, detail=f"No documentation found for: {body.name}")
    return explanation
