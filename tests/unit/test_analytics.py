"""
Unit tests for the search analytics recorder.
"""

import asyncio
import csv
import io
import json

import pytest

from search_intel import analytics as analytics_module
from search_intel.analytics import (
    REDACTED,
    SECONDS_PER_DAY,
    STORAGE_KEY,
    SearchAnalytics,
    calculate_percentile,
    calculate_query_complexity,
    escape_csv_formula,
    format_summary,
)
from search_intel.models import EventType, QueryComplexity
from search_intel.storage import MemoryStore, StorageError
from tests.conftest import FullStore


class BrokenStore(MemoryStore):
    def set(self, key, value):
        raise StorageError("disk unavailable")


def test_query_complexity():
    assert calculate_query_complexity("q methodology") == QueryComplexity.SIMPLE
    assert calculate_query_complexity("machine AND learning") == QueryComplexity.COMPLEX
    assert calculate_query_complexity('"exact phrase"') == QueryComplexity.COMPLEX
    assert calculate_query_complexity("a very long search query text") == QueryComplexity.MODERATE
    assert calculate_query_complexity("one two three four") == QueryComplexity.MODERATE


def test_percentile_nearest_rank():
    values = [float(v) for v in range(1, 101)]
    assert calculate_percentile(values, 50) == 50
    assert calculate_percentile(values, 95) == 95
    assert calculate_percentile(values, 99) == 99
    assert calculate_percentile([], 50) == 0
    assert calculate_percentile([7.0], 99) == 7.0


def test_escape_csv_formula():
    assert escape_csv_formula("=1+1") == "'=1+1"
    assert escape_csv_formula("+cmd") == "'+cmd"
    assert escape_csv_formula("-2") == "'-2"
    assert escape_csv_formula("@sum") == "'@sum"
    assert escape_csv_formula("plain") == "plain"
    assert escape_csv_formula("") == ""


def test_track_fills_defaults(analytics, clock):
    analytics.track_search("machine AND learning", response_time=120, results_count=8, source="manual")

    events = analytics.get_events()
    assert len(events) == 1
    event = events[0]
    assert event.event_type == EventType.SEARCH
    assert event.timestamp == clock()
    assert event.query_length == len("machine AND learning")
    assert event.complexity == QueryComplexity.COMPLEX
    assert event.success is True


def test_track_never_raises_on_bad_input(analytics):
    analytics.track_search("query", event_type="not-a-type")
    assert analytics.pending_count == 0
    assert analytics.get_events() == []


@pytest.mark.asyncio
async def test_rapid_events_are_batched_into_one_write(analytics, store):
    analytics.track_search("first")
    analytics.track_search("second")
    analytics.track_search("third")

    assert analytics.flush_scheduled
    assert analytics.pending_count == 3
    assert analytics.get_events() == []

    await asyncio.sleep(0.05)

    assert [e.query for e in analytics.get_events()] == ["first", "second", "third"]
    assert store.writes.get(STORAGE_KEY) == 1
    assert not analytics.flush_scheduled


@pytest.mark.asyncio
async def test_shutdown_hook_lifecycle(analytics, monkeypatch):
    registered = []
    unregistered = []
    monkeypatch.setattr(analytics_module.atexit, "register", registered.append)
    monkeypatch.setattr(analytics_module.atexit, "unregister", unregistered.append)

    for i in range(4):
        analytics.track_search(f"query {i}")

    assert len(registered) == 1
    assert analytics.flush_scheduled
    assert analytics.get_events() == []

    # Interpreter shutdown while the batch timer is still armed
    registered[0]()

    assert [e.query for e in analytics.get_events()] == [f"query {i}" for i in range(4)]
    assert analytics.pending_count == 0
    assert not analytics.flush_scheduled

    analytics.clear_data()
    assert unregistered == [registered[0]]

    analytics.clear_data()
    assert len(unregistered) == 1

    analytics.track_search("again")
    assert len(registered) == 2


@pytest.mark.asyncio
async def test_dispose_flushes_and_releases_shutdown_hook(analytics, monkeypatch):
    registered = []
    unregistered = []
    monkeypatch.setattr(analytics_module.atexit, "register", registered.append)
    monkeypatch.setattr(analytics_module.atexit, "unregister", unregistered.append)

    analytics.track_search("pending at dispose")
    analytics.dispose()

    assert [e.query for e in analytics.get_events()] == ["pending at dispose"]
    assert unregistered == registered
    assert not analytics.flush_scheduled


def test_log_keeps_newest_max_events(store, clock):
    recorder = SearchAnalytics(store, max_events=5, clock=clock)
    for i in range(7):
        clock.advance(1)
        recorder.track_search(f"query {i}")

    assert [e.query for e in recorder.get_events()] == [f"query {i}" for i in range(2, 7)]
    recorder.clear_data()


def test_flush_retries_after_capacity_error(clock):
    store = FullStore(failures=2)
    recorder = SearchAnalytics(store, clock=clock)

    recorder.track_search("survives")

    assert [e.query for e in recorder.get_events()] == ["survives"]
    recorder.clear_data()


def test_flush_drops_batch_when_storage_stays_full(clock):
    store = FullStore(failures=1000)
    recorder = SearchAnalytics(store, max_flush_retries=3, clock=clock)

    recorder.track_search("dropped")

    assert recorder.pending_count == 0
    assert recorder.get_events() == []
    recorder.clear_data()


def test_flush_keeps_batch_on_other_storage_errors(clock):
    recorder = SearchAnalytics(BrokenStore(), clock=clock)

    recorder.track_search("kept")

    assert recorder.pending_count == 1
    recorder.clear_data()


def test_summary_respects_window(analytics, clock):
    analytics.track_search("too old", timestamp=clock() - 31 * SECONDS_PER_DAY)
    analytics.track_search("recent", timestamp=clock() - 29 * SECONDS_PER_DAY)

    summary = analytics.get_summary(30)

    assert summary.total_searches == 1
    assert [e.query for e in summary.recent_searches] == ["recent"]


def test_summary_statistics(analytics):
    analytics.track_search("machine learning", response_time=100, results_count=10, source="manual")
    analytics.track_search("machine learning", response_time=300, results_count=20, source="history")
    analytics.track_search("deep learning", success=False, source="manual", error_type="timeout")
    analytics.track_suggestion_click("machine learning", "ai_suggestion")

    summary = analytics.get_summary()

    assert summary.total_searches == 3
    assert summary.success_rate == pytest.approx(200 / 3)
    assert summary.avg_response_time == 200
    assert summary.avg_results_count == 15
    assert summary.top_queries[0] == {"query": "machine learning", "count": 2}
    assert summary.source_distribution == {"manual": 2, "history": 1, "ai_suggestion": 0}
    assert summary.complexity_distribution["simple"] == 3
    assert len(summary.peak_search_hours) == 1


def test_summary_empty_when_no_data(analytics):
    summary = analytics.get_summary()
    assert summary.total_searches == 0
    assert summary.success_rate == 0
    assert summary.top_queries == []


def test_malformed_log_is_treated_as_empty(analytics, store):
    store.set(STORAGE_KEY, json.dumps([{"query": "missing fields"}]))
    assert analytics.get_events() == []
    assert analytics.get_summary().total_searches == 0

    store.set(STORAGE_KEY, "not json")
    assert analytics.get_events() == []


def test_badly_typed_event_is_dropped_without_losing_history(analytics):
    for i in range(5):
        analytics.track_search(f"valid {i}", response_time=50.0)
    analytics.track_search("deep learning", response_time="120")
    analytics.track_search("after")

    queries = [e.query for e in analytics.get_events()]
    assert "deep learning" not in queries
    assert queries[-1] == "after"
    assert analytics.get_summary(30).total_searches == 6


def test_malformed_items_are_skipped_on_load(analytics, store, clock):
    analytics.track_search("kept one")
    analytics.track_search("kept two")
    raw = json.loads(store.get(STORAGE_KEY))
    bad = dict(raw[0], query="bad", response_time="120")
    store.set(STORAGE_KEY, json.dumps([raw[0], bad, {"query": "missing fields"}, raw[1]]))

    assert [e.query for e in analytics.get_events()] == ["kept one", "kept two"]
    assert analytics.get_summary().total_searches == 2


def test_non_list_log_is_treated_as_empty(analytics, store):
    store.set(STORAGE_KEY, json.dumps({"events": []}))
    assert analytics.get_events() == []


def test_performance_metrics(analytics):
    for ms in range(1, 101):
        analytics.track_search(f"query {ms}", response_time=float(ms))
    analytics.track_search("broken", success=False, error_type="network")
    analytics.track_search("broken again", success=False, error_type="network")

    metrics = analytics.get_performance_metrics()

    assert metrics.p50_response_time == 50
    assert metrics.p95_response_time == 95
    assert metrics.p99_response_time == 99
    assert metrics.slowest_queries[0] == {"query": "query 100", "response_time": 100.0}
    assert len(metrics.slowest_queries) == 5
    assert metrics.error_rate == pytest.approx(2 / 102 * 100)
    assert metrics.common_errors == [{"error_type": "network", "count": 2}]


def test_export_json_with_and_without_queries(analytics):
    analytics.track_search("machine learning")

    exported = json.loads(analytics.export_data("json"))
    assert exported[0]["query"] == "machine learning"

    redacted = json.loads(analytics.export_data("json", include_queries=False))
    assert redacted[0]["query"] == REDACTED
    assert redacted[0]["query_length"] == len("machine learning")


def test_export_csv_escapes_formulas(analytics):
    analytics.track_search("=1+1", response_time=12, results_count=3, source="manual")

    exported = analytics.export_data("csv")
    lines = exported.splitlines()

    assert lines[0].startswith('"Timestamp","Event Type","Query"')
    assert "\"'=1+1\"" in lines[1]
    rows = list(csv.reader(io.StringIO(exported)))
    assert rows[1][2] == "'=1+1"
    assert rows[1][7] == "True"


def test_export_date_range(analytics, clock):
    analytics.track_search("early", timestamp=clock() - 100)
    analytics.track_search("late", timestamp=clock())

    exported = json.loads(analytics.export_data("json", date_range=(clock() - 50, clock())))

    assert [e["query"] for e in exported] == ["late"]


def test_export_unknown_format_returns_empty_string(analytics):
    assert analytics.export_data("xml") == ""


def test_clear_data(analytics, store):
    analytics.track_search("machine learning")
    analytics.clear_data()

    assert store.get(STORAGE_KEY) is None
    assert analytics.get_summary().total_searches == 0


def test_is_available(analytics):
    assert analytics.is_available() is True
    assert SearchAnalytics(BrokenStore()).is_available() is False


def test_format_summary(analytics):
    analytics.track_search("machine learning", response_time=100, results_count=10)
    report = format_summary(analytics.get_summary())

    assert "Total Searches: 1" in report
    assert '1. "machine learning" (1 times)' in report
