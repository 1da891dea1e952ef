"""
Search intelligence service facade.

Wires the durable store, analytics recorder, privacy settings, saved-search
registry, candidate sources and suggestion engine into one long-lived object.
"""

import logging
from typing import Optional

from aiolimiter import AsyncLimiter

from config.settings import Config, config
from .analytics import SearchAnalytics
from .cache import SuggestionCache
from .metrics import SuggestionMetrics
from .privacy import PrivacySettingsStore
from .sources import (
    InMemorySavedSearchRegistry,
    OpenAISemanticSource,
    SemanticSource,
    StaticSemanticSource,
    StaticTrendingSource,
    load_suggestion_tables,
)
from .storage import JsonFileStore, KeyValueStore, MemoryStore
from .suggestions import SearchSuggestions


logger = logging.getLogger(__name__)


class SearchIntelligence:
    """Owns every component of the subsystem for the lifetime of a process."""

    def __init__(self,
                 store: KeyValueStore,
                 analytics: SearchAnalytics,
                 privacy: PrivacySettingsStore,
                 saved_searches: InMemorySavedSearchRegistry,
                 suggestions: SearchSuggestions,
                 metrics: SuggestionMetrics):
        self.store = store
        self.analytics = analytics
        self.privacy = privacy
        self.saved_searches = saved_searches
        self.suggestions = suggestions
        self.metrics = metrics

    def reset(self) -> None:
        """Cancel in-flight requests, clear the cache and wipe analytics."""
        self.suggestions.reset()
        self.analytics.clear_data()
        logger.info("Search intelligence state reset")

    def dispose(self) -> None:
        """Flush pending analytics and release the shutdown hook."""
        self.suggestions.reset()
        self.analytics.dispose()
        logger.info("Search intelligence disposed")


def _build_store(cfg: Config) -> KeyValueStore:
    if cfg.STORAGE_BACKEND == 'memory':
        return MemoryStore(quota_bytes=cfg.STORAGE_QUOTA_BYTES)
    return JsonFileStore(cfg.STORAGE_PATH, quota_bytes=cfg.STORAGE_QUOTA_BYTES)


def _build_semantic_source(cfg: Config, tables: dict) -> SemanticSource:
    if cfg.SEMANTIC_BACKEND == 'openai':
        rate_limiter = None
        if cfg.ENABLE_RATE_LIMITING:
            rate_limiter = AsyncLimiter(
                max_rate=cfg.RATE_LIMIT_REQUESTS,
                time_period=cfg.RATE_LIMIT_WINDOW
            )
        logger.info(f"Using OpenAI semantic suggestions with model {cfg.SEMANTIC_MODEL}")
        return OpenAISemanticSource(
            api_key=cfg.OPENAI_API_KEY,
            model=cfg.SEMANTIC_MODEL,
            base_url=cfg.OPENAI_BASE_URL,
            rate_limiter=rate_limiter,
        )
    return StaticSemanticSource(tables['semantic'])


def create_search_intelligence(cfg: Optional[Config] = None,
                               store: Optional[KeyValueStore] = None) -> SearchIntelligence:
    """
    Build the subsystem from configuration.

    Args:
        cfg: Configuration to read (defaults to the global config)
        store: Durable store override, e.g. a MemoryStore in tests

    Returns:
        A ready SearchIntelligence instance
    """
    cfg = cfg or config
    store = store or _build_store(cfg)

    analytics = SearchAnalytics(
        store,
        max_events=cfg.MAX_EVENTS,
        retention_days=cfg.RETENTION_DAYS,
        batch_delay=cfg.BATCH_DELAY_MS / 1000,
    )
    privacy = PrivacySettingsStore(store)
    saved_searches = InMemorySavedSearchRegistry()
    metrics = SuggestionMetrics(enable_prometheus=cfg.ENABLE_PROMETHEUS_METRICS)

    tables = load_suggestion_tables(cfg.SUGGESTION_TABLES_PATH)
    suggestions = SearchSuggestions(
        analytics,
        privacy,
        saved_searches=saved_searches,
        trending=StaticTrendingSource(tables['trending']),
        semantic=_build_semantic_source(cfg, tables),
        cache=SuggestionCache(max_size=cfg.MAX_CACHE_SIZE, ttl=cfg.CACHE_TTL_SECONDS),
        metrics=metrics,
    )

    logger.info(
        f"Search intelligence initialized: storage={cfg.STORAGE_BACKEND}, "
        f"semantic={cfg.SEMANTIC_BACKEND}, cache={cfg.MAX_CACHE_SIZE}x{cfg.CACHE_TTL_SECONDS}s"
    )
    return SearchIntelligence(store, analytics, privacy, saved_searches, suggestions, metrics)
