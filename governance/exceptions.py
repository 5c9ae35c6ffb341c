"""
Exception Classes - Strongly typed exception hierarchy.

NO DICTIONARIES - All exceptions have typed attributes.
"""

from datetime import datetime
from uuid import UUID


class GovernanceError(Exception):
    """Base exception for all governance errors."""

    pass


class UnauthorizedError(GovernanceError):
    """Raised when a caller lacks the membership or role for an operation."""

    def __init__(self, reason: str, tenant_id: UUID | None = None, caller_id: str = "") -> None:
        self.reason = reason
        self.tenant_id = tenant_id
        self.caller_id = caller_id
        super().__init__(f"Unauthorized: {reason}")


class QuotaExceededError(GovernanceError):
    """Raised when a metered action would exceed the plan allowance."""

    def __init__(
        self,
        action: str,
        reset_at: datetime | None,
        limit: int | None,
        used: int,
        reason: str = "quota_exceeded",
    ) -> None:
        self.action = action
        self.reset_at = reset_at
        self.limit = limit
        self.used = used
        self.reason = reason
        reset_text = reset_at.isoformat() if reset_at else "n/a"
        super().__init__(
            f"Quota exceeded for {action}: used {used} of {limit} ({reason}, resets {reset_text})"
        )


class TenantNotFoundError(GovernanceError):
    """Raised when a tenant doesn't exist or has been deleted."""

    def __init__(self, tenant_id: UUID) -> None:
        self.tenant_id = tenant_id
        super().__init__(f"Tenant not found: {tenant_id}")


class ResourceNotFoundError(GovernanceError):
    """Raised when a tenant-scoped resource doesn't exist."""

    def __init__(self, resource: str, identifier: str) -> None:
        self.resource = resource
        self.identifier = identifier
        super().__init__(f"{resource} not found: {identifier}")


class MembershipConflictError(GovernanceError):
    """Raised when a user already belongs to the tenant."""

    def __init__(self, tenant_id: UUID, user_id: str) -> None:
        self.tenant_id = tenant_id
        self.user_id = user_id
        super().__init__(f"User {user_id} is already a member of tenant {tenant_id}")


class LastOwnerError(GovernanceError):
    """Raised when an operation would leave a tenant without an active owner."""

    def __init__(self, tenant_id: UUID) -> None:
        self.tenant_id = tenant_id
        super().__init__(f"Tenant {tenant_id} must keep at least one active owner")


class InviteNotFoundError(GovernanceError):
    """Raised when an invite token doesn't match any invite."""

    def __init__(self) -> None:
        super().__init__("Invite not found")


class InviteAlreadyUsedError(GovernanceError):
    """Raised when an invite has already been redeemed."""

    def __init__(self, invite_id: UUID, used_at: datetime) -> None:
        self.invite_id = invite_id
        self.used_at = used_at
        super().__init__(f"Invite {invite_id} already used at {used_at.isoformat()}")


class InviteExpiredError(GovernanceError):
    """Raised when an invite is redeemed after its expiry."""

    def __init__(self, invite_id: UUID, expires_at: datetime) -> None:
        self.invite_id = invite_id
        self.expires_at = expires_at
        super().__init__(f"Invite {invite_id} expired at {expires_at.isoformat()}")


class WriteVerificationError(GovernanceError):
    """Raised when database write verification fails."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Write verification failed: {message}")


class DataIntegrityError(GovernanceError):
    """Raised when data integrity constraint violated."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Data integrity error: {message}")


class DatabaseError(GovernanceError):
    """Raised when database operation fails unexpectedly."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Database error: {message}")
