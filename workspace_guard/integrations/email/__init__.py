"""Email provider integrations."""

from workspace_guard.integrations.email.resend_client import EmailClientError, ResendClient, get_resend_client

__all__ = ["EmailClientError", "ResendClient", "get_resend_client"]
