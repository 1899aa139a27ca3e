"""
Tests for structured logging
"""

import json
import logging

from integrations_api.logging_config import JsonFormatter, log_job_event, trace_id_var


def _record(**extra):
    record = logging.LogRecord("integrations_api.admission", logging.WARNING, __file__, 1,
                               "Reclaimed stale job %s", ("j1",), None)
    for k, v in extra.items():
        setattr(record, k, v)
    return record


def test_json_formatter_emits_job_fields():
    token = trace_id_var.set("trace-1")
    try:
        line = JsonFormatter().format(_record(job_id="j1", tenant_id="default", provider_slug="acessorias",
                                              component="admission", age_seconds=1200))
    finally:
        trace_id_var.reset(token)

    entry = json.loads(line)
    assert entry["msg"] == "Reclaimed stale job j1"
    assert entry["level"] == "WARNING"
    assert entry["trace_id"] == "trace-1"
    assert entry["job_id"] == "j1"
    assert entry["tenant_id"] == "default"
    assert entry["provider_slug"] == "acessorias"
    assert entry["component"] == "admission"
    assert entry["age_seconds"] == 1200
    assert entry["timestamp"].endswith("Z")


def test_json_formatter_defaults_component():
    entry = json.loads(JsonFormatter().format(_record()))
    assert entry["component"] == "api"
    assert entry["job_id"] is None


def test_log_job_event(caplog):
    with caplog.at_level(logging.INFO, logger="integrations_api"):
        log_job_event("job_created", "Job j1 created", job_id="j1", tenant_id="default")
    [rec] = [r for r in caplog.records if getattr(r, "event_type", None) == "job_created"]
    assert rec.job_id == "j1"
    assert rec.component == "jobs"
