"""
Job age and staleness, shared by admission, the reaper and the client view.

A job's age is measured from ``started_at`` when the worker has claimed it,
otherwise from ``created_at``. An active job older than the threshold is
treated as dead: admission reclaims it and the client view stops reporting
it as running.
"""
from datetime import datetime, timedelta
from typing import Any, Mapping, Optional, Union

from ..config import STALE_JOB_MINUTES
from ..job_states import ACTIVE_STATUSES
from ..utils.timeutil import parse_ts

STALE_THRESHOLD = timedelta(minutes=STALE_JOB_MINUTES)

JobLike = Union[Mapping[str, Any], Any]

def _field(job: JobLike, name: str):
    if isinstance(job, Mapping):
        return job.get(name)
    return getattr(job, name, None)

def reference_time(job: JobLike) -> Optional[datetime]:
    return parse_ts(_field(job, "started_at")) or parse_ts(_field(job, "created_at"))

def job_age(job: JobLike, now: datetime) -> timedelta:
    ref = reference_time(job)
    if ref is None:
        return timedelta(0)
    return now - ref

def is_stale(job: JobLike, now: datetime, threshold: timedelta = STALE_THRESHOLD) -> bool:
    return job_age(job, now) > threshold

def is_live(job: JobLike, now: datetime, threshold: timedelta = STALE_THRESHOLD) -> bool:
    """Active and not yet stale; the state that blocks a new submission."""
    return _field(job, "status") in ACTIVE_STATUSES and not is_stale(job, now, threshold)
