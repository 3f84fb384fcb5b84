from typing import Dict, List, Sequence, Union

from docharvest.models.index import SearchIndex
from docharvest.models.page import Page, PageSummary
from docharvest.models.search import SearchHit, SearchResponse
from docharvest.services.indexer import tokenize

EXCERPT_LENGTH = 360
DEFAULT_LIMIT = 5


def build_excerpt(text: str, tokens: Sequence[str], max_length: int = EXCERPT_LENGTH) -> str:
    """Window of *text* around the earliest occurrence of any token."""
    if not text:
        return ""
    lowered = text.lower()
    positions = [pos for pos in (lowered.find(token) for token in tokens) if pos >= 0]
    if not positions:
        return text[:max_length].strip()
    start = max(0, min(positions) - max_length // 3)
    return text[start:start + max_length].strip()


def _body(page: Union[Page, PageSummary]) -> str:
    if isinstance(page, Page):
        return page.text
    return page.excerpt


def search(
    index: SearchIndex,
    pages: Sequence[Union[Page, PageSummary]],
    query: str,
    limit: int = DEFAULT_LIMIT,
) -> SearchResponse:
    """Rank *pages* by the summed occurrence counts of the query terms.

    Page ids in the index are ordinals into *pages*; ties keep the order in
    which pages were first matched.
    """
    tokens = tokenize(query)
    scores: Dict[int, int] = {}
    for token in tokens:
        for page_id, count in index.terms.get(token, {}).items():
            scores[page_id] = scores.get(page_id, 0) + count

    ranked = sorted(scores.items(), key=lambda item: item[1], reverse=True)

    results: List[SearchHit] = []
    for page_id, score in ranked:
        if len(results) >= limit:
            break
        if page_id < 0 or page_id >= len(pages):
            continue
        page = pages[page_id]
        results.append(
            SearchHit(
                page_id=page_id,
                slug=page.slug,
                title=page.title,
                url=page.url,
                score=score,
                excerpt=build_excerpt(_body(page), tokens),
                headings=list(page.headings),
            )
        )

    return SearchResponse(query=query, tokens=tokens, total_matches=len(results), results=results)
