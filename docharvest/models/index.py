from datetime import datetime
from typing import Dict

from pydantic import BaseModel


class SearchIndex(BaseModel):
    """Inverted index: term -> page ordinal -> occurrence count."""

    updated_at: datetime
    page_count: int
    terms: Dict[str, Dict[int, int]] = {}
