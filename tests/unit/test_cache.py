"""
Unit tests for the suggestion cache.
"""

from search_intel.cache import CACHE_TTL_SECONDS, SuggestionCache
from search_intel.models import MatchType, Suggestion, SuggestionMetadata, SuggestionSource


def make_suggestion(query: str) -> Suggestion:
    return Suggestion(
        id=f"trending_0_{query}",
        query=query,
        source=SuggestionSource.TRENDING,
        score=10.0,
        metadata=SuggestionMetadata(match_type=MatchType.EXACT, recency_days=0),
    )


def test_get_returns_stored_suggestions(clock):
    cache = SuggestionCache(clock=clock)
    suggestions = [make_suggestion("machine learning")]

    cache.set("mach", suggestions)

    assert cache.get("mach") == suggestions
    assert cache.get("other") is None


def test_entry_expires_after_ttl(clock):
    cache = SuggestionCache(clock=clock)
    cache.set("mach", [make_suggestion("machine learning")])

    clock.advance(CACHE_TTL_SECONDS)
    assert cache.get("mach") is not None

    clock.advance(1)
    assert cache.get("mach") is None
    assert "mach" not in cache
    assert len(cache) == 0


def test_evicts_least_recently_accessed_not_oldest_inserted(clock):
    cache = SuggestionCache(max_size=2, clock=clock)
    cache.set("a", [make_suggestion("alpha")])
    clock.advance(1)
    cache.set("b", [make_suggestion("beta")])
    clock.advance(1)

    # Touching "a" makes "b" the least recently used
    assert cache.get("a") is not None
    clock.advance(1)
    cache.set("c", [make_suggestion("gamma")])

    assert "a" in cache
    assert "b" not in cache
    assert "c" in cache


def test_overwriting_existing_key_when_full_does_not_evict(clock):
    cache = SuggestionCache(max_size=2, clock=clock)
    cache.set("a", [make_suggestion("alpha")])
    clock.advance(1)
    cache.set("b", [make_suggestion("beta")])
    clock.advance(1)

    cache.set("a", [make_suggestion("alpha 2")])

    assert len(cache) == 2
    assert cache.get("a")[0].query == "alpha 2"
    assert cache.get("b") is not None


def test_size_never_exceeds_capacity(clock):
    cache = SuggestionCache(max_size=3, clock=clock)
    for i in range(10):
        cache.set(f"q{i}", [make_suggestion(f"query {i}")])
        clock.advance(1)
        assert len(cache) <= 3
    assert all(key in cache for key in ("q7", "q8", "q9"))


def test_clear(clock):
    cache = SuggestionCache(clock=clock)
    cache.set("a", [make_suggestion("alpha")])
    cache.clear()
    assert len(cache) == 0
    assert cache.get("a") is None
