"""
Domain errors raised by the orchestration services.

Each error knows the HTTP status it maps to and the JSON body the API
returns for it; the FastAPI exception handler in main.py renders them.
"""
from typing import Any, Dict, Optional


class OrchestrationError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message}


class ValidationFailed(OrchestrationError):
    status_code = 400


class TenantNotFound(OrchestrationError):
    status_code = 404


class IntegrationNotFound(OrchestrationError):
    status_code = 404

    def __init__(self, message: str = "Integration not found for this tenant"):
        super().__init__(message)


class IntegrationDisabled(OrchestrationError):
    status_code = 400

    def __init__(self, message: str = "Integration is disabled"):
        super().__init__(message)


class JobConflict(OrchestrationError):
    """An active, non-stale job already holds the (tenant, provider) key."""
    status_code = 409

    def __init__(self, job_id: str, status: str, message: str = "Job already in progress"):
        super().__init__(message)
        self.job_id = job_id
        self.status = status

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message, "job_id": self.job_id, "status": self.status}


class JobNotFound(OrchestrationError):
    status_code = 404

    def __init__(self, job_id: Optional[str] = None):
        super().__init__("Job not found")
        self.job_id = job_id


class JobAlreadyFinished(OrchestrationError):
    status_code = 409

    def __init__(self, job_id: str, status: str):
        super().__init__(f"Job {job_id} is already {status}")
        self.job_id = job_id
        self.status = status

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message, "job_id": self.job_id, "status": self.status}
