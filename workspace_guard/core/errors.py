"""Domain error taxonomy shared by services and routers.

Services raise these; the API layer renders them as a structured
``{"detail", "code"}`` body so callers always learn why a request failed.
"""

from __future__ import annotations

from fastapi import status


class WorkspaceGuardError(RuntimeError):
    """Base class for every expected domain failure."""

    code = "error"
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Request failed"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class Unauthorized(WorkspaceGuardError):
    code = "unauthorized"
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Not allowed to perform this operation"


class NotFound(WorkspaceGuardError):
    code = "not_found"
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Not found"


class DuplicateMembership(WorkspaceGuardError):
    code = "duplicate_membership"
    status_code = status.HTTP_409_CONFLICT
    default_message = "User is already a member of this workspace"


class CannotRemoveOwner(WorkspaceGuardError):
    code = "cannot_remove_owner"
    status_code = status.HTTP_409_CONFLICT
    default_message = "The workspace owner cannot be removed"


class DuplicateUser(WorkspaceGuardError):
    code = "duplicate_user"
    status_code = status.HTTP_409_CONFLICT
    default_message = "An account with this email already exists"


class InvalidToken(WorkspaceGuardError):
    code = "invalid_token"
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Invalid or unknown invitation"


class Expired(WorkspaceGuardError):
    code = "expired"
    status_code = status.HTTP_410_GONE
    default_message = "This invitation has expired"


class AlreadyUsed(WorkspaceGuardError):
    code = "already_used"
    status_code = status.HTTP_409_CONFLICT
    default_message = "This invitation has already been used"


class EmailMismatch(WorkspaceGuardError):
    code = "email_mismatch"
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "This invitation was issued to a different email address"


class DuplicatePendingInvitation(WorkspaceGuardError):
    code = "duplicate_pending_invitation"
    status_code = status.HTTP_409_CONFLICT
    default_message = "A pending invitation already exists for this email"


class InvalidState(WorkspaceGuardError):
    code = "invalid_state"
    status_code = status.HTTP_409_CONFLICT
    default_message = "Operation is not valid in the current state"


class RaceLost(WorkspaceGuardError):
    """Unique-key collision with a concurrent writer.

    Never leaves the service layer: callers recover it into the idempotent
    "already exists" outcome.
    """

    code = "race_lost"
    status_code = status.HTTP_409_CONFLICT
    default_message = "Concurrent write won the uniqueness race"


class AuditWriteError(WorkspaceGuardError):
    code = "audit_write_failed"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Audit record could not be written"


class InvalidCredentials(WorkspaceGuardError):
    code = "invalid_credentials"
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Invalid credentials"
