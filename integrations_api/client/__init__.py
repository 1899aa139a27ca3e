from .api import AdmissionConflict, ClientError, IntegrationsClient, SubmitResult
from .reconciler import JobReconciler, JobView, Notice

__all__ = [
    "AdmissionConflict",
    "ClientError",
    "IntegrationsClient",
    "SubmitResult",
    "JobReconciler",
    "JobView",
    "Notice",
]
