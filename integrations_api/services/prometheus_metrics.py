"""
Prometheus metrics for Integrations API
"""

from prometheus_client import Counter, Gauge, Histogram, generate_latest, CONTENT_TYPE_LATEST

# Build info
BUILD_INFO = Gauge(
    'integrations_build_info',
    'Build information',
    ['version']
)

# Admission decisions
ADMISSIONS_TOTAL = Counter(
    'integrations_admissions_total',
    'Admission requests by outcome',
    ['outcome']
)

ADMISSION_LATENCY = Histogram(
    'integrations_admission_latency_seconds',
    'Admission request latency in seconds',
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5]
)

# Stuck jobs forced to error
JOBS_RECLAIMED_TOTAL = Counter(
    'integrations_jobs_reclaimed_total',
    'Active jobs forced to error after exceeding their time threshold',
    ['reason']
)

# Worker trigger delivery
DISPATCH_TOTAL = Counter(
    'integrations_dispatch_total',
    'Worker trigger delivery attempts by result',
    ['result']
)

DISPATCH_BACKLOG = Gauge(
    'integrations_dispatch_backlog',
    'Queued worker trigger requests awaiting delivery'
)

# Per-key progress of the job currently holding the key
JOB_PROGRESS = Gauge(
    'integrations_job_progress',
    'Progress percentage of the active job for a tenant/provider',
    ['tenant_id', 'provider']
)

CHANGE_FEED_SUBSCRIBERS = Gauge(
    'integrations_change_feed_subscribers',
    'Open change feed subscriptions'
)


class PrometheusMetrics:
    """Prometheus metrics manager"""

    def set_build_info(self, version: str):
        BUILD_INFO.labels(version=version).set(1)

    def increment_admissions(self, outcome: str):
        ADMISSIONS_TOTAL.labels(outcome=outcome).inc()

    def observe_admission_latency(self, seconds: float):
        ADMISSION_LATENCY.observe(seconds)

    def increment_reclaimed(self, reason: str, count: int = 1):
        JOBS_RECLAIMED_TOTAL.labels(reason=reason).inc(count)

    def increment_dispatch(self, result: str):
        DISPATCH_TOTAL.labels(result=result).inc()

    def set_dispatch_backlog(self, depth: int):
        DISPATCH_BACKLOG.set(depth)

    def set_job_progress(self, tenant_id: str, provider: str, progress: int):
        JOB_PROGRESS.labels(tenant_id=tenant_id, provider=provider).set(progress)

    def clear_job_progress(self, tenant_id: str, provider: str):
        try:
            JOB_PROGRESS.remove(tenant_id, provider)
        except KeyError:
            # No series for this key yet
            pass

    def set_change_feed_subscribers(self, count: int):
        CHANGE_FEED_SUBSCRIBERS.set(count)

    def get_metrics(self) -> bytes:
        return generate_latest()

    def get_content_type(self) -> str:
        return CONTENT_TYPE_LATEST


# Global metrics instance
prometheus_metrics = PrometheusMetrics()
