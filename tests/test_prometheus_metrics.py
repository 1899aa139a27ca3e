"""
Tests for Prometheus metrics functionality
"""

from integrations_api.services.prometheus_metrics import PrometheusMetrics, prometheus_metrics


class TestPrometheusMetrics:
    """Test the PrometheusMetrics class."""

    def test_counters_and_gauges_accept_updates(self):
        metrics = PrometheusMetrics()
        metrics.increment_admissions("created")
        metrics.increment_admissions("conflict")
        metrics.observe_admission_latency(0.012)
        metrics.increment_reclaimed("admission")
        metrics.increment_reclaimed("reaper_pending", 3)
        metrics.increment_dispatch("delivered")
        metrics.set_dispatch_backlog(4)
        metrics.set_change_feed_subscribers(2)

    def test_job_progress_gauge_can_be_cleared_twice(self):
        metrics = PrometheusMetrics()
        metrics.set_job_progress("default", "acessorias", 40)
        metrics.clear_job_progress("default", "acessorias")
        metrics.clear_job_progress("default", "acessorias")

    def test_exposition_format(self):
        prometheus_metrics.set_build_info("test")
        output = prometheus_metrics.get_metrics().decode()
        assert "integrations_build_info" in output
        assert "integrations_dispatch_backlog" in output
        assert prometheus_metrics.get_content_type().startswith("text/plain")
