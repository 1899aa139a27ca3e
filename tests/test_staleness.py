"""
Tests for job age and staleness
"""

from datetime import timedelta

from integrations_api.services.staleness import STALE_THRESHOLD, is_live, is_stale, job_age, reference_time
from conftest import T0


def test_threshold_is_fifteen_minutes():
    """Reclaim threshold matches the documented 15 minutes"""
    assert STALE_THRESHOLD == timedelta(minutes=15)


def test_age_measured_from_created_at_when_not_started():
    job = {"status": "pending", "created_at": "2026-01-05T09:00:00Z", "started_at": None}
    assert reference_time(job) == T0
    assert job_age(job, T0 + timedelta(minutes=7)) == timedelta(minutes=7)


def test_age_measured_from_started_at_once_claimed():
    job = {"status": "running", "created_at": "2026-01-05T08:00:00Z", "started_at": "2026-01-05T09:00:00Z"}
    assert job_age(job, T0 + timedelta(minutes=3)) == timedelta(minutes=3)
    assert not is_stale(job, T0 + timedelta(minutes=3))


def test_boundary_is_not_stale():
    """Exactly at the threshold the job still blocks admission"""
    job = {"status": "pending", "created_at": "2026-01-05T09:00:00Z"}
    assert not is_stale(job, T0 + STALE_THRESHOLD)
    assert is_stale(job, T0 + STALE_THRESHOLD + timedelta(seconds=1))


def test_is_live_requires_active_status():
    now = T0 + timedelta(minutes=1)
    assert is_live({"status": "running", "created_at": "2026-01-05T09:00:00Z"}, now)
    assert not is_live({"status": "success", "created_at": "2026-01-05T09:00:00Z"}, now)
    assert not is_live({"status": "error", "created_at": "2026-01-05T09:00:00Z"}, now)


def test_stale_active_job_is_not_live():
    job = {"status": "running", "created_at": "2026-01-05T09:00:00Z", "started_at": "2026-01-05T09:00:00Z"}
    assert not is_live(job, T0 + timedelta(minutes=20))


def test_naive_datetimes_are_treated_as_utc():
    job = {"status": "pending", "created_at": T0.replace(tzinfo=None)}
    assert job_age(job, T0 + timedelta(minutes=2)) == timedelta(minutes=2)
