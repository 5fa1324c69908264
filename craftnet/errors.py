"""Workflow error taxonomy.

Each error carries an optional ``field``: the key of the form element the
message belongs to. The HTTP layer returns it alongside the message so the
frontend can render the error inline; ``None`` means a generic toast.
"""

from fastapi import status


class MarketplaceError(Exception):
    """Base class for errors raised by marketplace workflows."""

    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.message = message
        self.field = field


class ValidationError(MarketplaceError):
    """Input rejected before any write."""


class InvalidTransitionError(ValidationError):
    """The entity's current status does not allow the operation."""

    status_code = status.HTTP_409_CONFLICT


class AuthorizationError(MarketplaceError):
    """Caller is not the owner, assigned apprentice or an admin."""

    status_code = status.HTTP_403_FORBIDDEN


class AuthenticationError(AuthorizationError):
    """No usable identity on the request."""

    status_code = status.HTTP_401_UNAUTHORIZED


class NotFoundError(MarketplaceError):
    status_code = status.HTTP_404_NOT_FOUND


class InsufficientFunds(MarketplaceError):
    """Wallet balance is lower than the amount to debit."""

    status_code = status.HTTP_402_PAYMENT_REQUIRED

    def __init__(self, required, available, field: str | None = None):
        super().__init__(
            f"Insufficient funds. Required: ₦{required:,}, Available: ₦{available:,}",
            field=field,
        )
        self.required = required
        self.available = available


class AlreadyProcessed(MarketplaceError):
    """Duplicate application, rating or payout."""

    status_code = status.HTTP_409_CONFLICT


class RemoteFailure(MarketplaceError):
    """The Supabase gateway (database, storage, auth or RPC) returned an error."""

    status_code = status.HTTP_502_BAD_GATEWAY


class PayoutFailed(RemoteFailure):
    """Approval could not pay the apprentice; the status change was rolled back."""


class PartialFailure(RemoteFailure):
    """Dependents were removed but the parent row could not be confirmed deleted."""
