"""
Multi-source search suggestion engine.

Aggregates autocomplete candidates for a partially typed query from:
- user_history: the analytics recorder's 30-day view (weight 0.4)
- saved_search: the saved-search registry, ranked by usage (weight 0.3)
- trending: an external popularity-ranked list (weight 0.2)
- ai_semantic: an external semantic expansion per query word (weight 0.1)

Each candidate is scored as
    match score x recency multiplier x quality multiplier x source weight
then deduplicated by query text (highest score wins) and sorted.

Ranked lists are cached per normalized query. Overlapping requests for the
same key are handled with cancellation tokens: starting a request cancels
the previous one, a cancelled request never writes the cache, and a request
only ever removes its own token from the in-flight map.
"""

import asyncio
import logging
import math
import time
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Set, Union

from .analytics import RETENTION_DAYS, SECONDS_PER_DAY, SearchAnalytics
from .cache import SuggestionCache
from .concurrency import CancellationToken, RequestCancelledError
from .metrics import SuggestionMetrics
from .models import (
    MatchType,
    PrivacySettings,
    Suggestion,
    SuggestionMetadata,
    SuggestionSource,
)
from .privacy import PrivacySettingsStore
from .sources import SavedSearchRegistry, SemanticSource, TrendingSource


DEFAULT_MAX_RESULTS = 10
MIN_QUERY_LENGTH = 2

SOURCE_WEIGHTS = {
    SuggestionSource.USER_HISTORY: 0.4,
    SuggestionSource.SAVED_SEARCH: 0.3,
    SuggestionSource.TRENDING: 0.2,
    SuggestionSource.AI_SEMANTIC: 0.1,
}

MATCH_SCORES = {
    MatchType.EXACT: 100,
    MatchType.FUZZY: 80,
    MatchType.SUBSTRING: 60,
    MatchType.SEMANTIC: 40,
}


def classify_match(query: str, candidate: str) -> Optional[MatchType]:
    """
    Classify how ``candidate`` matches ``query`` (both already lower-cased).

    Returns:
        EXACT for a prefix match, FUZZY when a word of the candidate starts
        with the query, SUBSTRING when it merely contains it, None otherwise.
    """
    if query not in candidate:
        return None
    if candidate.startswith(query):
        return MatchType.EXACT
    if any(word.startswith(query) for word in candidate.split()):
        return MatchType.FUZZY
    return MatchType.SUBSTRING


def recency_multiplier(days: float) -> float:
    if days <= 1:
        return 1.5
    if days <= 7:
        return 1.2
    if days <= 30:
        return 1.0
    return 0.5


def success_rate_multiplier(success_rate: float) -> float:
    if success_rate >= 90:
        return 1.3
    if success_rate >= 70:
        return 1.1
    if success_rate >= 50:
        return 1.0
    return 0.7


def usage_multiplier(usage_count: int) -> float:
    if usage_count > 10:
        return 1.4
    if usage_count >= 3:
        return 1.2
    return 1.0


def score_candidate(match_type: MatchType,
                    recency_days: Optional[float],
                    quality: float,
                    source: SuggestionSource) -> float:
    """Base score times quality and source weight; recency applies only when given."""
    score = MATCH_SCORES[match_type] * quality * SOURCE_WEIGHTS[source]
    if recency_days is not None:
        score *= recency_multiplier(recency_days)
    return score


def rank_and_deduplicate(suggestions: Iterable[Suggestion]) -> List[Suggestion]:
    """Keep the best-scoring suggestion per query text, best first."""
    best: Dict[str, Suggestion] = {}
    for suggestion in suggestions:
        existing = best.get(suggestion.query)
        if existing is None or suggestion.score > existing.score:
            best[suggestion.query] = suggestion
    return sorted(best.values(), key=lambda s: s.score, reverse=True)


class SearchSuggestions:
    """Suggestion engine owning the suggestion cache and in-flight tokens."""

    def __init__(self,
                 analytics: SearchAnalytics,
                 privacy: PrivacySettingsStore,
                 saved_searches: Optional[SavedSearchRegistry] = None,
                 trending: Optional[TrendingSource] = None,
                 semantic: Optional[SemanticSource] = None,
                 cache: Optional[SuggestionCache] = None,
                 metrics: Optional[SuggestionMetrics] = None,
                 clock: Callable[[], float] = time.time):
        self.logger = logging.getLogger(f"{__name__}.SearchSuggestions")
        self.analytics = analytics
        self.privacy = privacy
        self.saved_searches = saved_searches
        self.trending = trending
        self.semantic = semantic
        self.clock = clock
        self.cache = cache or SuggestionCache(clock=clock)
        self.metrics = metrics or SuggestionMetrics(enable_prometheus=False)

        self._inflight: Dict[str, CancellationToken] = {}

        # Stale personalization must not survive a settings change
        self.privacy.subscribe(lambda _settings: self.clear_cache())

    async def get_suggestions(self,
                              query: str,
                              max_results: int = DEFAULT_MAX_RESULTS,
                              sources: Optional[Iterable[Union[SuggestionSource, str]]] = None,
                              min_score: float = 0,
                              personalized: bool = True) -> List[Suggestion]:
        """
        Ranked suggestions for a partially typed query.

        Args:
            query: Text typed so far
            max_results: Maximum number of suggestions returned
            sources: Restrict aggregation to these sources (default: all)
            min_score: Drop suggestions scoring below this
            personalized: Use personal data (history, saved searches)

        Returns:
            Suggestions sorted by descending score. Never raises; failures
            and superseded requests yield an empty list.
        """
        normalized: Optional[str] = None
        my_token: Optional[CancellationToken] = None

        try:
            if not query or len(query.strip()) < MIN_QUERY_LENGTH:
                self.metrics.record_request("rejected")
                return []

            normalized = query.strip().lower()
            wanted = self._resolve_sources(sources)

            settings = self.privacy.get()
            if not personalized or not settings.personalization_enabled:
                self.logger.debug("Personalization disabled, using generic suggestions")
                self.metrics.record_request("generic")
                return self._get_generic_suggestions(normalized, max_results)

            cached = self.cache.get(normalized)
            if cached is not None:
                self.logger.debug(f"Cache hit for suggestions: '{normalized}'")
                self.metrics.record_request("cache_hit")
                return self._filter_and_limit(
                    [s for s in cached if s.source in wanted], min_score, max_results
                )

            self._cancel_pending(normalized)
            my_token = CancellationToken(normalized)
            self._inflight[normalized] = my_token

            started = time.perf_counter()
            ranked = await self._aggregate(normalized, wanted, settings, my_token)

            # A superseded request must not overwrite the newer request's cache entry
            my_token.raise_if_cancelled()

            self.cache.set(normalized, ranked)
            self.metrics.record_request("cache_miss")
            self.metrics.observe_aggregation(time.perf_counter() - started)
            self.logger.debug(
                f"Suggestions generated for '{normalized}': {len(ranked)} candidates "
                f"from {sorted(s.value for s in wanted)}"
            )
            return self._filter_and_limit(ranked, min_score, max_results)

        except RequestCancelledError:
            self.logger.debug(f"Suggestion request cancelled: '{normalized}'")
            self.metrics.record_request("cancelled")
            return []
        except Exception as e:
            self.logger.error(f"Failed to get suggestions for '{query}': {e}")
            self.metrics.record_request("error")
            return []
        finally:
            if (normalized is not None and my_token is not None
                    and self._inflight.get(normalized) is my_token):
                del self._inflight[normalized]

    # ------------------------------------------------------------------
    # Aggregation
    # ------------------------------------------------------------------

    async def _aggregate(self,
                         query: str,
                         wanted: Set[SuggestionSource],
                         settings: PrivacySettings,
                         token: CancellationToken) -> List[Suggestion]:
        jobs = []
        if SuggestionSource.USER_HISTORY in wanted and settings.history_based_suggestions:
            jobs.append(self._run_source(SuggestionSource.USER_HISTORY, self._history_suggestions(query)))
        if SuggestionSource.SAVED_SEARCH in wanted and self.saved_searches is not None:
            jobs.append(self._run_source(SuggestionSource.SAVED_SEARCH, self._saved_search_suggestions(query)))
        if (SuggestionSource.TRENDING in wanted and settings.trending_queries_enabled
                and self.trending is not None):
            jobs.append(self._run_source(SuggestionSource.TRENDING, self._trending_suggestions(query, token)))
        if (SuggestionSource.AI_SEMANTIC in wanted and settings.ai_suggestions_enabled
                and self.semantic is not None):
            jobs.append(self._run_source(SuggestionSource.AI_SEMANTIC, self._semantic_suggestions(query, token)))

        results = await asyncio.gather(*jobs)
        token.raise_if_cancelled()
        return rank_and_deduplicate(s for batch in results for s in batch)

    async def _run_source(self,
                          source: SuggestionSource,
                          job: Awaitable[List[Suggestion]]) -> List[Suggestion]:
        """Await one source; its failure contributes nothing and never spreads."""
        try:
            return await job
        except RequestCancelledError:
            return []
        except Exception as e:
            self.logger.error(f"Failed to get {source.value} suggestions: {e}")
            self.metrics.record_source_failure(source.value)
            return []

    async def _history_suggestions(self, query: str) -> List[Suggestion]:
        summary = self.analytics.get_summary(RETENTION_DAYS)
        now = self.clock()
        suggestions = []

        for event in summary.recent_searches:
            match_type = classify_match(query, event.query.lower())
            if match_type is None:
                continue

            recency_days = math.floor((now - event.timestamp) / SECONDS_PER_DAY)
            success_rate = 100 if event.success else 0
            score = score_candidate(
                match_type, recency_days, success_rate_multiplier(success_rate),
                SuggestionSource.USER_HISTORY
            )
            suggestions.append(Suggestion(
                id=f"history_{event.timestamp}_{event.query}",
                query=event.query,
                source=SuggestionSource.USER_HISTORY,
                score=score,
                metadata=SuggestionMetadata(
                    match_type=match_type,
                    recency_days=recency_days,
                    success_rate=success_rate,
                    related_queries=[],
                ),
            ))
        return suggestions

    async def _saved_search_suggestions(self, query: str) -> List[Suggestion]:
        now = self.clock()
        suggestions = []

        for saved in self.saved_searches.get_all_searches(sort_by="usage"):
            match_type = classify_match(query, saved.query.lower())
            if match_type is None:
                continue

            recency_days = math.floor((now - saved.created_at) / SECONDS_PER_DAY)
            score = score_candidate(
                match_type, recency_days, usage_multiplier(saved.usage_count),
                SuggestionSource.SAVED_SEARCH
            )
            suggestions.append(Suggestion(
                id=f"saved_{saved.id}",
                query=saved.query,
                source=SuggestionSource.SAVED_SEARCH,
                score=score,
                metadata=SuggestionMetadata(
                    match_type=match_type,
                    recency_days=recency_days,
                    usage_count=saved.usage_count,
                    tags=list(saved.tags),
                ),
            ))
        return suggestions

    async def _trending_suggestions(self, query: str, token: CancellationToken) -> List[Suggestion]:
        candidates = await self.trending(query, token)
        token.raise_if_cancelled()
        suggestions = []

        for index, candidate in enumerate(candidates):
            match_type = classify_match(query, candidate.lower())
            if match_type is None:
                continue

            popularity = (len(candidates) - index) / len(candidates)
            suggestions.append(Suggestion(
                id=f"trending_{index}_{candidate}",
                query=candidate,
                source=SuggestionSource.TRENDING,
                score=score_candidate(match_type, None, popularity, SuggestionSource.TRENDING),
                metadata=SuggestionMetadata(match_type=match_type, recency_days=0),
            ))
        return suggestions

    async def _semantic_suggestions(self, query: str, token: CancellationToken) -> List[Suggestion]:
        words = query.split()
        expansions = await asyncio.gather(*(self.semantic(word, token) for word in words))
        token.raise_if_cancelled()
        suggestions = []

        for word, related_queries in zip(words, expansions):
            for index, related in enumerate(related_queries):
                relevance = (len(related_queries) - index) / len(related_queries)
                suggestions.append(Suggestion(
                    id=f"ai_{word}_{related}",
                    query=related,
                    source=SuggestionSource.AI_SEMANTIC,
                    score=score_candidate(MatchType.SEMANTIC, None, relevance, SuggestionSource.AI_SEMANTIC),
                    metadata=SuggestionMetadata(
                        match_type=MatchType.SEMANTIC,
                        recency_days=0,
                        related_queries=[query],
                    ),
                ))
        return suggestions

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _resolve_sources(sources: Optional[Iterable[Union[SuggestionSource, str]]]) -> Set[SuggestionSource]:
        if sources is None:
            return set(SuggestionSource)
        return {SuggestionSource(s) for s in sources}

    @staticmethod
    def _filter_and_limit(suggestions: List[Suggestion], min_score: float, max_results: int) -> List[Suggestion]:
        return [s for s in suggestions if s.score >= min_score][:max_results]

    def _get_generic_suggestions(self, query: str, max_results: int) -> List[Suggestion]:
        # Non-personalized results would come from the trending backend only;
        # nothing is returned until that backend serves anonymous requests.
        return []

    def _cancel_pending(self, key: str) -> None:
        token = self._inflight.pop(key, None)
        if token is not None:
            token.cancel()
            self.logger.debug(f"Cancelled superseded suggestion request for '{key}'")

    def pending_request(self, key: str) -> Optional[CancellationToken]:
        """Token of the in-flight request for a normalized query, if any."""
        return self._inflight.get(key)

    # ------------------------------------------------------------------
    # Cache and privacy management
    # ------------------------------------------------------------------

    def clear_cache(self) -> None:
        self.cache.clear()
        self.logger.info("Suggestion cache cleared")

    def get_privacy_settings(self) -> PrivacySettings:
        return self.privacy.get()

    def set_privacy_settings(self, settings: PrivacySettings) -> None:
        """Persist settings; the subscription clears the cache."""
        self.privacy.set(settings)

    def set_personalization_enabled(self, enabled: bool) -> None:
        self.privacy.update(personalization_enabled=enabled)

    def reset(self) -> None:
        """Cancel every in-flight request and drop all cached suggestions."""
        for key in list(self._inflight):
            self._cancel_pending(key)
        self.cache.clear()
