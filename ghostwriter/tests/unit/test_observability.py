"""
Unit tests for pipeline metrics, structured stage logs and JSON log formatting
"""
import json
import logging

from prometheus_client import CollectorRegistry

from ghostwriter.core.config import Settings
from ghostwriter.core.logging import JsonFormatter, TaskContextFilter, setup_logging
from ghostwriter.core.monitoring import PipelineMetrics
from ghostwriter.core.structured_logging import LogLevel, PipelineStage, StructuredLogger


class TestPipelineMetrics:

    def setup_method(self):
        self.registry = CollectorRegistry()
        self.metrics = PipelineMetrics(registry=self.registry)

    def _value(self, name, labels=None):
        return self.registry.get_sample_value(name, labels or {})

    def test_counters(self):
        self.metrics.record_sync("twitter", "ready", duration_seconds=1.5)
        self.metrics.record_rate_limit("timeline", allowed=False)
        self.metrics.record_persisted_posts(written=3, failed=1)
        self.metrics.record_suggestions("network_based", 2)
        self.metrics.record_expired(4)
        self.metrics.record_ai_request("extract_topics", "malformed")

        assert self._value("ghostwriter_syncs_total", {"platform": "twitter", "outcome": "ready"}) == 1
        assert self._value("ghostwriter_sync_duration_seconds_count", {"platform": "twitter"}) == 1
        assert self._value("ghostwriter_rate_limit_decisions_total", {"resource": "timeline", "decision": "denied"}) == 1
        assert self._value("ghostwriter_posts_persisted_total", {"result": "written"}) == 3
        assert self._value("ghostwriter_posts_persisted_total", {"result": "failed"}) == 1
        assert self._value("ghostwriter_suggestions_generated_total", {"strategy": "network_based"}) == 2
        assert self._value("ghostwriter_suggestions_expired_total") == 4
        assert self._value("ghostwriter_ai_requests_total", {"operation": "extract_topics", "result": "malformed"}) == 1

    def test_collectors_are_isolated_per_registry(self):
        PipelineMetrics()

        assert b"ghostwriter_syncs_total" in self.metrics.export()


class TestStructuredLogger:

    def setup_method(self):
        self.logger = StructuredLogger(service_name="ghostwriter-test")

    def test_correlation_context_nests(self):
        with self.logger.correlation_context("task-1"):
            with self.logger.correlation_context("task-2"):
                assert self.logger.correlation_id == "task-2"
            assert self.logger.correlation_id == "task-1"
        assert self.logger.correlation_id is None

    def test_log_stage_emits_json(self, caplog):
        with caplog.at_level(logging.INFO, logger="structured_logging"):
            with self.logger.correlation_context("task-9"):
                entry = self.logger.log_stage(
                    PipelineStage.SYNC,
                    action="sync_completed",
                    message="Synced 2 posts",
                    connected_account_id=7,
                    duration_ms=12.3456,
                )

        payload = json.loads(caplog.records[-1].getMessage())
        assert payload["correlation_id"] == "task-9"
        assert payload["stage"] == "sync"
        assert payload["connected_account_id"] == 7
        assert payload["duration_ms"] == 12.35
        assert "platform" not in payload
        assert entry.level == "INFO"

    def test_error_promotes_level(self):
        entry = self.logger.log_stage(
            PipelineStage.SYNC, action="sync_failed", message="boom",
            level=LogLevel.INFO, error=RuntimeError("upstream down"),
        )

        assert entry.level == "ERROR"
        assert entry.error_details == {"type": "RuntimeError", "message": "upstream down"}


class TestJsonFormatter:

    def test_includes_pipeline_extras(self):
        record = logging.LogRecord("ghostwriter.tasks", logging.INFO, __file__, 10, "Queued %s jobs", (3,), None)
        record.connected_account_id = 42
        record.task_id = "task-1"

        payload = json.loads(JsonFormatter().format(record))

        assert payload["message"] == "Queued 3 jobs"
        assert payload["level"] == "INFO"
        assert payload["connected_account_id"] == 42
        assert payload["task_id"] == "task-1"
        assert "job_type" not in payload

    def test_adds_service_name_when_configured(self):
        record = logging.LogRecord("ghostwriter.tasks", logging.WARNING, __file__, 10, "slow", (), None)

        payload = json.loads(JsonFormatter("ghostwriter-worker").format(record))

        assert payload["service"] == "ghostwriter-worker"


class TestSetupLogging:

    def setup_method(self):
        root = logging.getLogger()
        self._handlers = list(root.handlers)
        self._level = root.level

    def teardown_method(self):
        root = logging.getLogger()
        root.handlers[:] = self._handlers
        root.setLevel(self._level)

    def test_production_logs_json_at_configured_level(self):
        settings = Settings(environment="production", log_level="warning")

        setup_logging(settings, service_name="ghostwriter-worker")

        root = logging.getLogger()
        assert root.level == logging.WARNING
        assert len(root.handlers) == 1
        handler = root.handlers[0]
        assert isinstance(handler.formatter, JsonFormatter)
        assert handler.formatter.service_name == "ghostwriter-worker"
        assert any(isinstance(f, TaskContextFilter) for f in handler.filters)
        assert logging.getLogger("urllib3").level == logging.WARNING

    def test_development_logs_readable_lines(self):
        setup_logging(Settings(environment="development", log_level="DEBUG"))

        handler = logging.getLogger().handlers[0]
        assert not isinstance(handler.formatter, JsonFormatter)
        assert logging.getLogger().level == logging.DEBUG

    def test_task_filter_leaves_records_outside_tasks_untouched(self):
        record = logging.LogRecord("ghostwriter", logging.INFO, __file__, 1, "hello", (), None)

        assert TaskContextFilter().filter(record) is True
        assert not hasattr(record, "task_id")
