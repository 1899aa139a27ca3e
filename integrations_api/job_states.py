"""Job status vocabulary, shared by the server models and the client view."""

ACTIVE_STATUSES = ("pending", "running")
TERMINAL_STATUSES = ("success", "error")
