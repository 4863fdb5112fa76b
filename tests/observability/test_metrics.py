from __future__ import annotations

import logging

import pytest

from leadflow.config import Settings
from leadflow.observability.metrics import MetricsReporter, statsd_name


def test_statsd_name_folds_known_tags_in_fixed_order():
    name = statsd_name(
        "pipeline.status.updated",
        {"trigger": "manual", "table": "leads", "lead_id": "ignored"},
    )

    assert name == "pipeline.status.updated.table.leads.trigger.manual"


def test_statsd_name_sanitizes_values():
    assert statsd_name("webhook.accepted", {"event": "Lead Responded!"}) == (
        "webhook.accepted.event.lead_responded_"
    )
    assert statsd_name("webhook.accepted", {"event": ""}) == "webhook.accepted"


def test_stdout_backend_logs_namespaced_payload(caplog):
    reporter = MetricsReporter(Settings(metrics_namespace="pipeline_test"))

    with caplog.at_level(logging.INFO, logger="leadflow.metrics"):
        reporter.increment("pipeline.status.noop", tags={"trigger": "manual"})

    [record] = [r for r in caplog.records if r.getMessage() == "lead_pipeline.metric"]
    assert record.metrics["metric"] == "pipeline_test.pipeline.status.noop"
    assert record.metrics["type"] == "counter"
    assert record.metrics["tags"] == {"trigger": "manual"}


def test_disabled_reporter_emits_nothing(caplog):
    reporter = MetricsReporter(Settings(metrics_disable=True))

    with caplog.at_level(logging.INFO, logger="leadflow.metrics"):
        reporter.gauge("pipeline.leads", 3)

    assert reporter.enabled is False
    assert not caplog.records


def test_timer_emits_on_error_with_block_tags(caplog):
    reporter = MetricsReporter(Settings())

    with caplog.at_level(logging.INFO, logger="leadflow.metrics"):
        with pytest.raises(RuntimeError):
            with reporter.timer("pipeline.automation.latency", tags={"event": "lead-lost"}) as tags:
                tags["applied"] = False
                raise RuntimeError("boom")

    [record] = [r for r in caplog.records if r.getMessage() == "lead_pipeline.metric"]
    assert record.metrics["type"] == "timing"
    assert record.metrics["tags"] == {"event": "lead-lost", "applied": False}
