import logging
import re
from datetime import datetime, timezone
from typing import Dict, List, Sequence, Tuple

from docharvest.models.index import SearchIndex
from docharvest.models.page import Page
from docharvest.services.storage import CorpusStore

logger = logging.getLogger(__name__)

_NON_WORD_RE = re.compile(r"[^a-z0-9а-яё]+")

STOP_WORDS = frozenset(
    # English
    "a an and or the to of in on for is are with by be as at from".split()
    # Russian
    + "что как это для или и в на по из к с о об обо при без над под про".split()
)


def tokenize(text: str) -> List[str]:
    """Lower-cased word tokens, minus single characters and stop words."""
    if not text:
        return []
    words = _NON_WORD_RE.sub(" ", text.lower()).split()
    return [word for word in words if len(word) > 1 and word not in STOP_WORDS]


def build_index(pages: Sequence[Page]) -> SearchIndex:
    """Term -> page ordinal -> count, over ``title + text`` of every page."""
    terms: Dict[str, Dict[int, int]] = {}
    for page_id, page in enumerate(pages):
        for token in tokenize(f"{page.title} {page.text}"):
            postings = terms.setdefault(token, {})
            postings[page_id] = postings.get(page_id, 0) + 1
    return SearchIndex(
        updated_at=datetime.now(timezone.utc),
        page_count=len(pages),
        terms=terms,
    )


def reindex(store: CorpusStore) -> Tuple[List[Page], SearchIndex]:
    """Rebuild the summaries and the index from every page on disk."""
    pages = store.load_pages()
    index = build_index(pages)
    store.save_summaries(pages)
    store.save_index(index)
    logger.info("Index: %d pages, %d terms", index.page_count, len(index.terms))
    return pages, index
