from .tenant import Tenant
from .apikey import ApiKey
from .integration import TenantIntegration
from .job import IntegrationJob, ACTIVE_STATUSES, TERMINAL_STATUSES
from .dispatch import DispatchOutbox

__all__ = [
    "Tenant",
    "ApiKey",
    "TenantIntegration",
    "IntegrationJob",
    "DispatchOutbox",
    "ACTIVE_STATUSES",
    "TERMINAL_STATUSES",
]
