"""Suggestion engine metrics using Prometheus or a plain-dict fallback."""

from typing import Any, Dict

from prometheus_client import CollectorRegistry, Counter, Histogram, generate_latest


class SuggestionMetrics:
    """Counters for cache behaviour, cancellations and source failures."""

    def __init__(self, enable_prometheus: bool = True):
        self.enable_prometheus = enable_prometheus

        if enable_prometheus:
            self.registry = CollectorRegistry()
            self.request_counter = Counter(
                'suggestion_requests_total',
                'Suggestion requests by outcome',
                ['outcome'],
                registry=self.registry
            )
            self.source_failures = Counter(
                'suggestion_source_failures_total',
                'Candidate source failures',
                ['source'],
                registry=self.registry
            )
            self.request_duration = Histogram(
                'suggestion_request_duration_seconds',
                'Duration of suggestion aggregation on cache miss',
                registry=self.registry
            )
        else:
            self.metrics: Dict[str, Any] = {
                "requests": {},
                "source_failures": {},
                "total_aggregation_time": 0.0,
                "aggregations": 0,
            }

    def record_request(self, outcome: str) -> None:
        """Outcomes: rejected, generic, cache_hit, cache_miss, cancelled, error."""
        if self.enable_prometheus:
            self.request_counter.labels(outcome=outcome).inc()
        else:
            requests = self.metrics["requests"]
            requests[outcome] = requests.get(outcome, 0) + 1

    def record_source_failure(self, source: str) -> None:
        if self.enable_prometheus:
            self.source_failures.labels(source=source).inc()
        else:
            failures = self.metrics["source_failures"]
            failures[source] = failures.get(source, 0) + 1

    def observe_aggregation(self, seconds: float) -> None:
        if self.enable_prometheus:
            self.request_duration.observe(seconds)
        else:
            self.metrics["aggregations"] += 1
            self.metrics["total_aggregation_time"] += seconds

    def snapshot(self) -> Dict[str, Any]:
        """Current metrics in a standardized format."""
        if self.enable_prometheus:
            return {
                "prometheus_metrics": generate_latest(self.registry).decode('utf-8'),
                "format": "prometheus"
            }
        return {
            "metrics": self.metrics,
            "format": "simple"
        }

    def count(self, outcome: str) -> float:
        """Number of requests recorded with ``outcome``."""
        if self.enable_prometheus:
            value = self.registry.get_sample_value('suggestion_requests_total', {'outcome': outcome})
            return value or 0.0
        return self.metrics["requests"].get(outcome, 0)
