"""Integrations API: tenant-scoped integration job orchestration."""
