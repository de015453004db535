"""Invitation email delivery.

Delivery runs after the invitation has committed and never undoes it: a
failure is logged and reported back as ``sent=False``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from html import escape
from typing import Optional
from urllib.parse import quote

from workspace_guard.core.config import get_settings
from workspace_guard.core.logger import get_logger
from workspace_guard.integrations.email import EmailClientError, ResendClient, get_resend_client


logger = get_logger("workspace_guard.invitations.mailer")


@dataclass(frozen=True)
class InvitationDelivery:
    sent: bool
    invite_url: str
    message_id: Optional[str] = None
    reason: Optional[str] = None


def build_invite_url(token: str, base_url: Optional[str] = None) -> str:
    root = (base_url if base_url is not None else get_settings().app_public_base_url).rstrip("/")
    return f"{root}/app?token={quote(token, safe='')}"


def render_invitation_email(
    *,
    workspace_name: str,
    inviter_email: str,
    role: str,
    invite_url: str,
    expires_at: datetime,
) -> tuple[str, str, str]:
    """Return (subject, html, text) for an invitation email."""

    expiration = expires_at.strftime("%A, %B %d, %Y")
    subject = f"You're invited to join {workspace_name}"
    html = (
        "<!DOCTYPE html><html><body>"
        f"<p><strong>{escape(inviter_email)}</strong> has invited you to join "
        f"<strong>{escape(workspace_name)}</strong> as a <strong>{escape(role)}</strong>.</p>"
        f'<p><a href="{escape(invite_url, quote=True)}">Accept Invitation</a></p>'
        f"<p>This invitation will expire on <strong>{escape(expiration)}</strong>.</p>"
        "<p>If you didn't expect this invitation, you can safely ignore this email.</p>"
        f"<p>If the link doesn't work, paste this address into your browser: {escape(invite_url)}</p>"
        "</body></html>"
    )
    text = (
        f"{inviter_email} has invited you to join {workspace_name} as a {role}.\n\n"
        f"Accept the invitation: {invite_url}\n\n"
        f"This invitation will expire on {expiration}.\n"
    )
    return subject, html, text


class InvitationMailer:
    def __init__(self, *, resend_client: Optional[ResendClient] = None, from_address: Optional[str] = None) -> None:
        settings = get_settings()
        self._resend_client = resend_client
        self._from_address = (from_address or settings.email_from_address).strip()
        self._enabled = settings.invitation_email_enabled

    def _resolve_client(self) -> ResendClient:
        if self._resend_client is not None:
            return self._resend_client
        return get_resend_client()

    def send(
        self,
        *,
        invitation_id: str,
        email: str,
        token: str,
        workspace_name: str,
        inviter_email: str,
        role: str,
        expires_at: datetime,
    ) -> InvitationDelivery:
        invite_url = build_invite_url(token)
        if not self._enabled:
            return InvitationDelivery(sent=False, invite_url=invite_url, reason="email_disabled")

        client = self._resolve_client()
        if not client.configured:
            logger.warning("invitation_email_not_configured", invitation_id=invitation_id)
            return InvitationDelivery(sent=False, invite_url=invite_url, reason="email_not_configured")

        subject, html, text = render_invitation_email(
            workspace_name=workspace_name,
            inviter_email=inviter_email,
            role=role,
            invite_url=invite_url,
            expires_at=expires_at,
        )
        try:
            body = client.send_email(
                from_address=self._from_address,
                to=[email],
                subject=subject,
                html=html,
                text=text,
                idempotency_key=f"invitation-{invitation_id}",
            )
        except EmailClientError as exc:
            logger.error("invitation_email_failed", invitation_id=invitation_id, error=str(exc))
            return InvitationDelivery(sent=False, invite_url=invite_url, reason=str(exc))

        message_id = body.get("id")
        logger.info("invitation_email_sent", invitation_id=invitation_id, message_id=message_id)
        return InvitationDelivery(
            sent=True,
            invite_url=invite_url,
            message_id=str(message_id) if message_id is not None else None,
        )
