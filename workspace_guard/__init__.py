"""Workspace-scoped multi-tenant authorization service."""

__version__ = "0.1.0"
