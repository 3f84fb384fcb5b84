import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from docharvest.config import configure_logging
from docharvest.routers.crawl import router as crawl_router
from docharvest.routers.pages import router as pages_router
from docharvest.routers.search import limiter, router as search_router
from docharvest.services.storage import CorpusMissingError

configure_logging()

logger = logging.getLogger(__name__)

app = FastAPI(
    title="docharvest – Documentation Corpus API",
    description="Search and read a locally harvested documentation site.",
    version="1.0.0",
)

# Rate-limiting state
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(CorpusMissingError)
async def corpus_missing_handler(request: Request, exc: CorpusMissingError) -> JSONResponse:
    logger.error("Corpus unavailable for %s: %s", request.url, exc)
    return JSONResponse(status_code=503, content={"detail": str(exc)})


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled exception for %s", request.url)
    return JSONResponse(status_code=500, content={"detail": "An unexpected error occurred."})


app.include_router(search_router)
app.include_router(pages_router)
app.include_router(crawl_router)


@app.get("/", summary="Health check")
async def root() -> dict:
    return {"ok": True}


@app.get("/health", summary="Health check")
async def health() -> dict:
    return {"ok": True}
