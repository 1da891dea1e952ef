"""
Search analytics recorder.

Records discrete search events, batches them into durable storage and
computes summary and percentile statistics over the stored log.

Write path:
- track_search() fills defaults and appends to an in-memory buffer
- a single deferred flush (~100ms) merges the buffer into the durable log
- the log keeps the newest MAX_EVENTS events of the retention window
- a full store evicts the oldest 25% of events and retries (bounded)
- an atexit hook forces a final flush on interpreter shutdown

Read path (get_summary, get_performance_metrics, export_data) never raises;
failures degrade to empty results.
"""

import atexit
import csv
import io
import json
import logging
import math
import time
from collections import Counter
from datetime import datetime, timezone
from typing import Callable, Iterable, List, Optional, Tuple, Union

from jsonschema import Draft202012Validator, ValidationError
from tenacity import RetryCallState, Retrying, retry_if_exception_type, stop_after_attempt

from .concurrency import DeferredTask
from .models import (
    AnalyticsSummary,
    EventType,
    ExportFormat,
    PerformanceMetrics,
    QueryComplexity,
    SearchEvent,
    SearchSource,
)
from .storage import KeyValueStore, StorageCapacityExceeded, StorageError


STORAGE_KEY = 'search_intel.analytics'
MAX_EVENTS = 1000
RETENTION_DAYS = 30
BATCH_DELAY_SECONDS = 0.1
MAX_FLUSH_RETRIES = 3
EVICTION_FRACTION = 0.25

COMPLEX_QUERY_INDICATORS = ('AND', 'OR', 'NOT', '"', '(', ')')
MODERATE_LENGTH_THRESHOLD = 20
MODERATE_WORD_THRESHOLD = 3

REDACTED = '[REDACTED]'
CSV_FORMULA_PREFIXES = ('=', '+', '-', '@')
CSV_HEADERS = [
    'Timestamp',
    'Event Type',
    'Query',
    'Query Length',
    'Complexity',
    'Response Time (ms)',
    'Results Count',
    'Success',
    'Source',
]

SECONDS_PER_DAY = 24 * 60 * 60

EVENT_SCHEMA = {
    "type": "object",
    "properties": {
        "event_type": {"enum": [e.value for e in EventType]},
        "timestamp": {"type": "number"},
        "query": {"type": "string"},
        "query_length": {"type": "integer", "minimum": 0},
        "complexity": {"enum": [c.value for c in QueryComplexity]},
        "success": {"type": "boolean"},
        "response_time": {"type": "number"},
        "results_count": {"type": "integer"},
        "source": {"enum": [s.value for s in SearchSource]},
        "filters": {"type": "array", "items": {"type": "string"}},
        "error_type": {"type": "string"},
    },
    "required": ["event_type", "timestamp", "query", "query_length", "complexity", "success"],
}

EVENT_VALIDATOR = Draft202012Validator(EVENT_SCHEMA)


def calculate_query_complexity(query: str) -> QueryComplexity:
    """Classify a query by boolean operators, quoting and length."""
    if any(indicator in query for indicator in COMPLEX_QUERY_INDICATORS):
        return QueryComplexity.COMPLEX
    if len(query) > MODERATE_LENGTH_THRESHOLD or len(query.split()) > MODERATE_WORD_THRESHOLD:
        return QueryComplexity.MODERATE
    return QueryComplexity.SIMPLE


def calculate_percentile(sorted_values: List[float], percentile: float) -> float:
    """Nearest-rank percentile over an ascending list; 0 when empty."""
    if not sorted_values:
        return 0
    index = math.ceil((percentile / 100) * len(sorted_values)) - 1
    index = min(max(index, 0), len(sorted_values) - 1)
    return sorted_values[index]


def escape_csv_formula(value: str) -> str:
    """Neutralize values a spreadsheet would evaluate as a formula."""
    if value and value[0] in CSV_FORMULA_PREFIXES:
        return f"'{value}"
    return value


class SearchAnalytics:
    """Batched recorder and analyzer of search events."""

    def __init__(self,
                 store: KeyValueStore,
                 max_events: int = MAX_EVENTS,
                 retention_days: int = RETENTION_DAYS,
                 batch_delay: float = BATCH_DELAY_SECONDS,
                 max_flush_retries: int = MAX_FLUSH_RETRIES,
                 clock: Callable[[], float] = time.time):
        self.logger = logging.getLogger(f"{__name__}.SearchAnalytics")
        self.store = store
        self.max_events = max_events
        self.retention_days = retention_days
        self.batch_delay = batch_delay
        self.max_flush_retries = max_flush_retries
        self.clock = clock

        self._pending: List[SearchEvent] = []
        self._flush_task = DeferredTask("analytics-flush")
        self._teardown_registered = False

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    def track_search(self,
                     query: str = "",
                     event_type: Union[EventType, str] = EventType.SEARCH,
                     success: bool = True,
                     response_time: Optional[float] = None,
                     results_count: Optional[int] = None,
                     source: Union[SearchSource, str, None] = None,
                     filters: Optional[List[str]] = None,
                     error_type: Optional[str] = None,
                     timestamp: Optional[float] = None) -> None:
        """
        Record a search event.

        The event is buffered and written by a deferred flush, so nothing is
        observable in the durable log until the batch delay has elapsed.
        Failures are logged, never raised.
        """
        try:
            query = query or ""
            event = SearchEvent(
                event_type=EventType(event_type),
                timestamp=self.clock() if timestamp is None else timestamp,
                query=query,
                query_length=len(query),
                complexity=calculate_query_complexity(query),
                success=success,
                response_time=response_time,
                results_count=results_count,
                source=SearchSource(source) if source is not None else None,
                filters=list(filters) if filters is not None else None,
                error_type=error_type,
            )

            try:
                EVENT_VALIDATOR.validate(event.to_dict())
            except ValidationError as e:
                self.logger.error(f"Dropping invalid search event: {e.message}")
                return

            self._pending.append(event)

            if not self._teardown_registered:
                atexit.register(self.flush)
                self._teardown_registered = True
                self.logger.debug("Registered shutdown flush for analytics")

            self._flush_task.schedule(self.flush, self.batch_delay)

            self.logger.debug(
                f"Search event tracked (batched): {event.event_type.value} "
                f"'{event.query[:30]}', batch size {len(self._pending)}"
            )
        except Exception as e:
            self.logger.error(f"Failed to track search event: {e}")

    def track_suggestion_click(self, query: str, source: Union[SearchSource, str]) -> None:
        """Record that the user picked a suggestion."""
        self.track_search(query, event_type=EventType.SUGGESTION_CLICK, source=source, success=True)

    def track_filter_applied(self, filters: List[str]) -> None:
        """Record a filter-only interaction."""
        self.track_search("", event_type=EventType.FILTER_APPLIED, filters=filters, success=True)

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def flush_scheduled(self) -> bool:
        return self._flush_task.armed

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def flush(self) -> None:
        """Write buffered events to the durable log now."""
        self._flush_task.cancel()
        if not self._pending:
            return

        retrying = Retrying(
            stop=stop_after_attempt(self.max_flush_retries + 1),
            retry=retry_if_exception_type(StorageCapacityExceeded),
            before_sleep=self._evict_oldest,
            reraise=True,
        )
        try:
            for attempt in retrying:
                with attempt:
                    self._write_pending()
        except StorageCapacityExceeded:
            self.logger.warning(
                f"Storage quota exceeded after {self.max_flush_retries} retries, "
                f"dropping {len(self._pending)} analytics events"
            )
            self._pending = []
        except StorageError as e:
            self.logger.error(f"Failed to flush analytics events: {e}")

    def _write_pending(self) -> None:
        merged = self._load_events(self.retention_days) + self._pending
        trimmed = merged[-self.max_events:]
        self._save_events(trimmed)
        self.logger.debug(f"Analytics events flushed: {len(self._pending)} new, {len(trimmed)} total")
        self._pending = []

    def _evict_oldest(self, retry_state: RetryCallState) -> None:
        self.logger.warning(
            f"Storage quota exceeded - retry {retry_state.attempt_number}/{self.max_flush_retries}"
        )
        events = self._load_events(self.retention_days)
        try:
            self._save_events(events[math.floor(len(events) * EVICTION_FRACTION):])
        except StorageError:
            self.logger.debug("Failed to clear space during retry")

    def _save_events(self, events: Iterable[SearchEvent]) -> None:
        self.store.set(STORAGE_KEY, json.dumps([e.to_dict() for e in events]))

    def _load_events(self, days: int) -> List[SearchEvent]:
        """Stored events no older than ``days``; malformed entries are skipped."""
        try:
            stored = self.store.get(STORAGE_KEY)
        except StorageError as e:
            self.logger.error(f"Failed to read analytics events: {e}")
            return []
        if not stored:
            return []

        try:
            raw = json.loads(stored)
        except json.JSONDecodeError as e:
            self.logger.warning(f"Discarding unreadable analytics log: {e}")
            return []
        if not isinstance(raw, list):
            self.logger.warning("Discarding analytics log that is not a list of events")
            return []

        cutoff = self.clock() - days * SECONDS_PER_DAY
        events = []
        skipped = 0
        for item in raw:
            if not EVENT_VALIDATOR.is_valid(item):
                skipped += 1
                continue
            if item["timestamp"] >= cutoff:
                events.append(SearchEvent.from_dict(item))

        if skipped:
            self.logger.warning(f"Skipped {skipped} malformed analytics events")
        return events

    def get_events(self, days: int = RETENTION_DAYS) -> List[SearchEvent]:
        """Persisted events of the trailing window (pending events excluded)."""
        return self._load_events(days)

    # ------------------------------------------------------------------
    # Analysis
    # ------------------------------------------------------------------

    def get_summary(self, days: int = RETENTION_DAYS) -> AnalyticsSummary:
        """
        Summarize the search events of the trailing ``days`` window.

        Args:
            days: Window size in days

        Returns:
            AnalyticsSummary, all-zero when there is no data or on failure
        """
        try:
            events = self._load_events(days)
            if not events:
                return AnalyticsSummary()

            search_events = [e for e in events if e.event_type == EventType.SEARCH]
            total = len(search_events)
            successful = sum(1 for e in search_events if e.success)

            response_times = [e.response_time for e in search_events if e.response_time is not None]
            results_counts = [e.results_count for e in search_events if e.results_count is not None]

            complexity = {c.value: 0 for c in QueryComplexity}
            sources = {s.value: 0 for s in SearchSource}
            hours: Counter = Counter()
            queries: Counter = Counter()
            for event in search_events:
                complexity[event.complexity.value] += 1
                if event.source is not None:
                    sources[event.source.value] += 1
                hours[datetime.fromtimestamp(event.timestamp).hour] += 1
                if event.query:
                    queries[event.query] += 1

            return AnalyticsSummary(
                total_searches=total,
                success_rate=(successful / total) * 100 if total else 0.0,
                avg_response_time=sum(response_times) / len(response_times) if response_times else 0.0,
                avg_results_count=sum(results_counts) / len(results_counts) if results_counts else 0.0,
                complexity_distribution=complexity,
                peak_search_hours=[hour for hour, _ in hours.most_common(5)],
                top_queries=[{'query': q, 'count': c} for q, c in queries.most_common(10)],
                source_distribution=sources,
                recent_searches=search_events,
            )
        except Exception as e:
            self.logger.error(f"Failed to generate analytics summary: {e}")
            return AnalyticsSummary()

    def get_performance_metrics(self) -> PerformanceMetrics:
        """Response-time percentiles, slowest queries and error breakdown."""
        try:
            search_events = [
                e for e in self._load_events(self.retention_days)
                if e.event_type == EventType.SEARCH
            ]
            timed = [e for e in search_events if e.response_time is not None]
            response_times = sorted(e.response_time for e in timed)

            slowest = sorted(timed, key=lambda e: e.response_time, reverse=True)[:5]

            failed = [e for e in search_events if not e.success]
            error_counts = Counter(e.error_type for e in failed if e.error_type)

            return PerformanceMetrics(
                p50_response_time=calculate_percentile(response_times, 50),
                p95_response_time=calculate_percentile(response_times, 95),
                p99_response_time=calculate_percentile(response_times, 99),
                slowest_queries=[{'query': e.query, 'response_time': e.response_time} for e in slowest],
                error_rate=(len(failed) / len(search_events)) * 100 if search_events else 0.0,
                common_errors=[{'error_type': t, 'count': c} for t, c in error_counts.most_common(5)],
            )
        except Exception as e:
            self.logger.error(f"Failed to calculate performance metrics: {e}")
            return PerformanceMetrics()

    # ------------------------------------------------------------------
    # Export and lifecycle
    # ------------------------------------------------------------------

    def export_data(self,
                    format: Union[ExportFormat, str] = ExportFormat.JSON,
                    date_range: Optional[Tuple[float, float]] = None,
                    include_queries: bool = True) -> str:
        """
        Serialize stored events as JSON or CSV.

        Args:
            format: "json" or "csv"
            date_range: Inclusive (start, end) epoch-second bounds
            include_queries: When False every query is replaced by a redaction token

        Returns:
            Serialized events, or an empty string on failure
        """
        try:
            export_format = ExportFormat(format)
            events = self._load_events(self.retention_days)

            if date_range is not None:
                start, end = date_range
                events = [e for e in events if start <= e.timestamp <= end]

            if not include_queries:
                events = [e.with_query(REDACTED) for e in events]

            if export_format == ExportFormat.JSON:
                return json.dumps([e.to_dict() for e in events], indent=2)

            buffer = io.StringIO()
            writer = csv.writer(buffer, quoting=csv.QUOTE_NONNUMERIC, lineterminator='\n')
            writer.writerow(CSV_HEADERS)
            for e in events:
                writer.writerow([
                    datetime.fromtimestamp(e.timestamp, tz=timezone.utc).isoformat(),
                    e.event_type.value,
                    escape_csv_formula(e.query) if include_queries else REDACTED,
                    e.query_length,
                    e.complexity.value,
                    e.response_time if e.response_time is not None else '',
                    e.results_count if e.results_count is not None else '',
                    e.success,
                    e.source.value if e.source is not None else '',
                ])
            return buffer.getvalue().rstrip('\n')
        except Exception as e:
            self.logger.error(f"Failed to export analytics data: {e}")
            return ''

    def clear_data(self) -> None:
        """Wipe the durable log, the buffer, the armed flush and the shutdown hook."""
        try:
            self.store.remove(STORAGE_KEY)
        except StorageError as e:
            self.logger.error(f"Failed to clear analytics data: {e}")
        self._pending = []
        self._flush_task.cancel()
        self._unregister_teardown()
        self.logger.info("Analytics data cleared")

    def dispose(self) -> None:
        """Flush whatever is buffered and release the shutdown hook."""
        self.flush()
        self._unregister_teardown()

    def is_available(self) -> bool:
        """Whether the durable store accepts writes."""
        test_key = f"{STORAGE_KEY}.availability"
        try:
            self.store.set(test_key, 'test')
            self.store.remove(test_key)
            return True
        except StorageError:
            return False

    def _unregister_teardown(self) -> None:
        if self._teardown_registered:
            atexit.unregister(self.flush)
            self._teardown_registered = False


def format_summary(summary: AnalyticsSummary) -> str:
    """Human-readable report of an analytics summary."""
    top = "\n".join(
        f"{i}. \"{q['query']}\" ({q['count']} times)"
        for i, q in enumerate(summary.top_queries, start=1)
    )
    complexity = summary.complexity_distribution
    sources = summary.source_distribution
    return f"""Search Analytics Summary
========================

Total Searches: {summary.total_searches}
Success Rate: {summary.success_rate:.1f}%
Avg Response Time: {summary.avg_response_time:.0f}ms
Avg Results Count: {summary.avg_results_count:.0f}

Query Complexity:
- Simple: {complexity.get('simple', 0)}
- Moderate: {complexity.get('moderate', 0)}
- Complex: {complexity.get('complex', 0)}

Peak Search Hours: {', '.join(str(h) for h in summary.peak_search_hours)}

Top Queries:
{top}

Search Sources:
- Manual: {sources.get('manual', 0)}
- History: {sources.get('history', 0)}
- AI Suggestions: {sources.get('ai_suggestion', 0)}""".strip()
