"""
Shared data types for search analytics and suggestions.
"""

from dataclasses import asdict, dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional


# Type definitions and enums
class EventType(Enum):
    SEARCH = "search"
    SUGGESTION_CLICK = "suggestion_click"
    FILTER_APPLIED = "filter_applied"
    EXPORT = "export"


class QueryComplexity(Enum):
    SIMPLE = "simple"
    MODERATE = "moderate"
    COMPLEX = "complex"


class SearchSource(Enum):
    MANUAL = "manual"
    HISTORY = "history"
    AI_SUGGESTION = "ai_suggestion"


class SuggestionSource(Enum):
    USER_HISTORY = "user_history"
    SAVED_SEARCH = "saved_search"
    TRENDING = "trending"
    AI_SEMANTIC = "ai_semantic"


class MatchType(Enum):
    EXACT = "exact"
    FUZZY = "fuzzy"
    SUBSTRING = "substring"
    SEMANTIC = "semantic"


class ExportFormat(Enum):
    JSON = "json"
    CSV = "csv"


@dataclass(frozen=True)
class SearchEvent:
    """A recorded search interaction. Immutable once created."""
    event_type: EventType
    timestamp: float
    query: str
    query_length: int
    complexity: QueryComplexity
    success: bool
    response_time: Optional[float] = None
    results_count: Optional[int] = None
    source: Optional[SearchSource] = None
    filters: Optional[List[str]] = None
    error_type: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            'event_type': self.event_type.value,
            'timestamp': self.timestamp,
            'query': self.query,
            'query_length': self.query_length,
            'complexity': self.complexity.value,
            'success': self.success,
        }
        if self.response_time is not None:
            data['response_time'] = self.response_time
        if self.results_count is not None:
            data['results_count'] = self.results_count
        if self.source is not None:
            data['source'] = self.source.value
        if self.filters is not None:
            data['filters'] = list(self.filters)
        if self.error_type is not None:
            data['error_type'] = self.error_type
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SearchEvent':
        source = data.get('source')
        return cls(
            event_type=EventType(data['event_type']),
            timestamp=float(data['timestamp']),
            query=data['query'],
            query_length=int(data['query_length']),
            complexity=QueryComplexity(data['complexity']),
            success=bool(data['success']),
            response_time=data.get('response_time'),
            results_count=data.get('results_count'),
            source=SearchSource(source) if source is not None else None,
            filters=data.get('filters'),
            error_type=data.get('error_type'),
        )

    def with_query(self, query: str) -> 'SearchEvent':
        """Copy of this event carrying a different query text."""
        return replace(self, query=query)


@dataclass
class SuggestionMetadata:
    """How a suggestion matched and what drove its score."""
    match_type: MatchType
    recency_days: int
    usage_count: Optional[int] = None
    success_rate: Optional[float] = None
    tags: Optional[List[str]] = None
    related_queries: Optional[List[str]] = None


@dataclass
class Suggestion:
    """A ranked autocomplete candidate."""
    id: str
    query: str
    source: SuggestionSource
    score: float
    metadata: SuggestionMetadata

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['source'] = self.source.value
        data['metadata']['match_type'] = self.metadata.match_type.value
        data['metadata'] = {k: v for k, v in data['metadata'].items() if v is not None}
        return data


@dataclass
class PrivacySettings:
    """Switches gating personalized suggestions."""
    personalization_enabled: bool = True
    history_based_suggestions: bool = True
    trending_queries_enabled: bool = True
    ai_suggestions_enabled: bool = False

    def to_dict(self) -> Dict[str, bool]:
        return asdict(self)


@dataclass
class SavedSearch:
    """A bookmarked query owned by the saved-search registry."""
    id: str
    query: str
    created_at: float
    usage_count: int = 0
    tags: List[str] = field(default_factory=list)
    name: str = ""
    is_pinned: bool = False
    last_used_at: Optional[float] = None


@dataclass
class AnalyticsSummary:
    """Aggregates over the search events of a trailing window."""
    total_searches: int = 0
    success_rate: float = 0.0
    avg_response_time: float = 0.0
    avg_results_count: float = 0.0
    complexity_distribution: Dict[str, int] = field(
        default_factory=lambda: {c.value: 0 for c in QueryComplexity}
    )
    peak_search_hours: List[int] = field(default_factory=list)
    top_queries: List[Dict[str, Any]] = field(default_factory=list)
    source_distribution: Dict[str, int] = field(
        default_factory=lambda: {s.value: 0 for s in SearchSource}
    )
    recent_searches: List[SearchEvent] = field(default_factory=list)

    def to_dict(self, include_recent: bool = False) -> Dict[str, Any]:
        data = {
            'total_searches': self.total_searches,
            'success_rate': self.success_rate,
            'avg_response_time': self.avg_response_time,
            'avg_results_count': self.avg_results_count,
            'complexity_distribution': dict(self.complexity_distribution),
            'peak_search_hours': list(self.peak_search_hours),
            'top_queries': [dict(q) for q in self.top_queries],
            'source_distribution': dict(self.source_distribution),
        }
        if include_recent:
            data['recent_searches'] = [e.to_dict() for e in self.recent_searches]
        return data


@dataclass
class PerformanceMetrics:
    """Latency percentiles and error breakdown."""
    p50_response_time: float = 0.0
    p95_response_time: float = 0.0
    p99_response_time: float = 0.0
    slowest_queries: List[Dict[str, Any]] = field(default_factory=list)
    error_rate: float = 0.0
    common_errors: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
