"""
Candidate sources consumed by the suggestion engine.

Contracts:
- SavedSearchRegistry.get_all_searches(sort_by) -> [SavedSearch]
- TrendingSource(normalized_prefix, token) -> [str], most popular first
- SemanticSource(query_word, token) -> [str], most relevant first

Async sources receive a CancellationToken and are expected to check it
between chunks of work. Failures propagate; the engine isolates them.
"""

import asyncio
import logging
import time
import uuid
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Union

import yaml
from aiolimiter import AsyncLimiter
from openai import OpenAI

from .concurrency import CancellationToken
from .models import SavedSearch


TrendingSource = Callable[[str, CancellationToken], Awaitable[List[str]]]
SemanticSource = Callable[[str, CancellationToken], Awaitable[List[str]]]

MAX_SAVED_SEARCHES = 100


class SavedSearchRegistry(Protocol):
    """Read-only view of the saved-search registry."""

    def get_all_searches(self, sort_by: str = "recent") -> List[SavedSearch]:
        ...


class InMemorySavedSearchRegistry:
    """
    Minimal saved-search registry.

    Sorting puts pinned searches first, then orders by ``recent``
    (newest first), ``usage`` (most used first) or ``alpha`` (by name).
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self.logger = logging.getLogger(f"{__name__}.InMemorySavedSearchRegistry")
        self.clock = clock
        self._searches: Dict[str, SavedSearch] = {}

    def save_search(self,
                    query: str,
                    name: Optional[str] = None,
                    tags: Optional[List[str]] = None,
                    is_pinned: bool = False,
                    usage_count: int = 0,
                    created_at: Optional[float] = None) -> SavedSearch:
        """Save ``query``; saving an existing query updates its metadata."""
        query = (query or "").strip()
        if not query:
            raise ValueError("Query is required")

        for existing in self._searches.values():
            if existing.query == query:
                existing.name = name or existing.name
                existing.tags = list(tags) if tags is not None else existing.tags
                existing.is_pinned = is_pinned or existing.is_pinned
                self.logger.info(f"Updated existing saved search '{query}'")
                return existing

        if len(self._searches) >= MAX_SAVED_SEARCHES:
            raise ValueError(f"Maximum {MAX_SAVED_SEARCHES} saved searches reached")

        saved = SavedSearch(
            id=uuid.uuid4().hex,
            query=query,
            name=name or query,
            created_at=self.clock() if created_at is None else created_at,
            usage_count=usage_count,
            tags=list(tags or []),
            is_pinned=is_pinned,
        )
        self._searches[saved.id] = saved
        self.logger.info(f"Search saved: {saved.id}")
        return saved

    def use_search(self, search_id: str) -> Optional[SavedSearch]:
        """Bump usage tracking for a saved search."""
        saved = self._searches.get(search_id)
        if saved is None:
            self.logger.warning(f"Attempted to use non-existent search {search_id}")
            return None
        saved.usage_count += 1
        saved.last_used_at = self.clock()
        return saved

    def delete_search(self, search_id: str) -> bool:
        if self._searches.pop(search_id, None) is None:
            self.logger.warning(f"Attempted to delete non-existent search {search_id}")
            return False
        return True

    def get_all_searches(self, sort_by: str = "recent") -> List[SavedSearch]:
        searches = list(self._searches.values())
        if sort_by == "usage":
            searches.sort(key=lambda s: s.usage_count, reverse=True)
        elif sort_by == "alpha":
            searches.sort(key=lambda s: s.name.lower())
        else:
            searches.sort(key=lambda s: s.created_at, reverse=True)
        return [s for s in searches if s.is_pinned] + [s for s in searches if not s.is_pinned]


def load_suggestion_tables(path: Union[str, Path]) -> Dict[str, Any]:
    """Load the static trending list and semantic map from YAML."""
    try:
        with open(path, 'r', encoding='utf-8') as f:
            tables = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise RuntimeError(f"Failed to load suggestion tables from {path}: {e}")
    return {
        'trending': [str(q) for q in tables.get('trending', [])],
        'semantic': {
            str(word).lower(): [str(r) for r in related]
            for word, related in (tables.get('semantic') or {}).items()
        },
    }


class StaticTrendingSource:
    """Trending queries from a fixed popularity-ranked list."""

    def __init__(self, queries: List[str]):
        self.queries = list(queries)

    async def __call__(self, prefix: str, token: CancellationToken) -> List[str]:
        token.raise_if_cancelled()
        return list(self.queries)


class StaticSemanticSource:
    """Related queries from a fixed word -> related-terms table."""

    def __init__(self, table: Dict[str, List[str]]):
        self.table = {word.lower(): list(related) for word, related in table.items()}

    async def __call__(self, word: str, token: CancellationToken) -> List[str]:
        token.raise_if_cancelled()
        return list(self.table.get(word.lower(), []))


class OpenAISemanticSource:
    """
    Related queries from an OpenAI-compatible chat model.

    Calls are rate limited and run in a worker thread; the token is checked
    before and after each call so a superseded request stops promptly.
    """

    PROMPT = (
        "List {count} short search queries closely related to the term '{word}' "
        "for an academic literature search. One query per line, no numbering."
    )

    def __init__(self,
                 api_key: str,
                 model: str = "gpt-4o-mini",
                 base_url: Optional[str] = None,
                 max_related: int = 3,
                 rate_limiter: Optional[AsyncLimiter] = None):
        if not api_key:
            raise ValueError("OpenAI API key is required")
        self.client = OpenAI(api_key=api_key, base_url=base_url)
        self.model = model
        self.max_related = max_related
        self.rate_limiter = rate_limiter or AsyncLimiter(max_rate=10, time_period=1)
        self.logger = logging.getLogger(f"{__name__}.OpenAISemanticSource")

    async def __call__(self, word: str, token: CancellationToken) -> List[str]:
        token.raise_if_cancelled()
        async with self.rate_limiter:
            token.raise_if_cancelled()
            response = await asyncio.to_thread(
                self.client.chat.completions.create,
                model=self.model,
                messages=[
                    {"role": "user", "content": self.PROMPT.format(count=self.max_related, word=word)}
                ],
                max_tokens=100,
                temperature=0.2,
            )
        token.raise_if_cancelled()

        content = response.choices[0].message.content or ""
        related = []
        for line in content.splitlines():
            candidate = line.strip().lstrip("-*• ").strip()
            if candidate and candidate.lower() != word.lower() and candidate not in related:
                related.append(candidate)
        self.logger.debug(f"Semantic expansion for '{word}': {len(related)} related queries")
        return related[:self.max_related]
