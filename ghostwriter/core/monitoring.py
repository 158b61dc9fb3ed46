"""
Prometheus metrics for the sync and suggestion pipeline.

Metrics live in a private CollectorRegistry so workers and tests can create
the collector more than once without clashing with the default registry.
"""
import logging
from typing import Optional

from prometheus_client import Counter, Histogram, CollectorRegistry, generate_latest

logger = logging.getLogger(__name__)


class PipelineMetrics:
    """Prometheus metrics collector for pipeline stages"""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or CollectorRegistry()

        self.syncs_total = Counter(
            'ghostwriter_syncs_total',
            'Network sync runs by outcome',
            ['platform', 'outcome'],
            registry=self.registry
        )

        self.sync_duration_seconds = Histogram(
            'ghostwriter_sync_duration_seconds',
            'Network sync duration in seconds',
            ['platform'],
            registry=self.registry
        )

        self.rate_limit_decisions_total = Counter(
            'ghostwriter_rate_limit_decisions_total',
            'Rate-limit gate decisions',
            ['resource', 'decision'],
            registry=self.registry
        )

        self.posts_persisted_total = Counter(
            'ghostwriter_posts_persisted_total',
            'Network posts written through the persistence layer',
            ['result'],
            registry=self.registry
        )

        self.suggestions_generated_total = Counter(
            'ghostwriter_suggestions_generated_total',
            'Suggestions persisted by generation strategy',
            ['strategy'],
            registry=self.registry
        )

        self.suggestions_expired_total = Counter(
            'ghostwriter_suggestions_expired_total',
            'Suggestions moved to expired by the lifecycle manager',
            registry=self.registry
        )

        self.ai_requests_total = Counter(
            'ghostwriter_ai_requests_total',
            'AI text service requests by operation and result',
            ['operation', 'result'],
            registry=self.registry
        )

    def record_sync(self, platform: str, outcome: str, duration_seconds: Optional[float] = None):
        self.syncs_total.labels(platform=platform, outcome=outcome).inc()
        if duration_seconds is not None:
            self.sync_duration_seconds.labels(platform=platform).observe(duration_seconds)

    def record_rate_limit(self, resource: str, allowed: bool):
        decision = "allowed" if allowed else "denied"
        self.rate_limit_decisions_total.labels(resource=resource, decision=decision).inc()

    def record_persisted_posts(self, written: int, failed: int):
        if written:
            self.posts_persisted_total.labels(result="written").inc(written)
        if failed:
            self.posts_persisted_total.labels(result="failed").inc(failed)

    def record_suggestions(self, strategy: str, count: int):
        if count:
            self.suggestions_generated_total.labels(strategy=strategy).inc(count)

    def record_expired(self, count: int):
        if count:
            self.suggestions_expired_total.inc(count)

    def record_ai_request(self, operation: str, result: str):
        self.ai_requests_total.labels(operation=operation, result=result).inc()

    def export(self) -> bytes:
        """Render metrics in Prometheus exposition format"""
        return generate_latest(self.registry)


pipeline_metrics = PipelineMetrics()
