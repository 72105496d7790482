"""
core/errors.py -- Typed error taxonomy for the authentication subsystem.

Every failure a service can report is an AuthError subclass. Callers branch
on the exception type, never on message text.

Two messages travel with each error:
  str(exc)        -- internal detail for logs (may include token prefixes,
                     user ids, store keys; never full secrets).
  public_message  -- deliberately generic text returned to clients so the API
                     cannot be used as an account-enumeration or
                     fingerprinting oracle.

The API layer maps status_code/code/public_message onto the shared
ErrorResponse envelope (see api/main.py).

Layer rule: core/ is the kernel. No imports from api/, auth/, ephemeral/, or notify/.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for all expected authentication failures."""

    status_code: int = 401
    code: str = "unauthorized"
    default_public_message: str = "Unauthorized"

    def __init__(self, detail: str = "", public_message: str | None = None) -> None:
        super().__init__(detail or self.default_public_message)
        self.public_message = public_message or self.default_public_message


class ValidationError(AuthError):
    """Malformed request or a server-side policy violation (e.g. weak password)."""

    status_code = 400
    code = "validation_error"
    default_public_message = "Invalid request."


class NotFoundError(AuthError):
    """User, device, or ephemeral record is absent."""

    status_code = 404
    code = "not_found"
    default_public_message = "Not found."


class ExpiredError(AuthError):
    """Ticket, OTP, or token is past its lifetime."""

    code = "expired"
    default_public_message = "Invalid or expired link."


class AlreadyUsedError(AuthError):
    """Replay of a single-use artifact (magic link, refresh token)."""

    code = "already_used"
    default_public_message = "Invalid or expired link."


class MismatchError(AuthError):
    """Fingerprint similarity below threshold or refresh-token owner mismatch."""

    code = "mismatch"
    default_public_message = "Unauthorized"


class UnauthorizedError(AuthError):
    """Bad credentials, invalid token, or any generic rejection."""

    code = "unauthorized"
    default_public_message = "Unauthorized"


class AccountLockedError(AuthError):
    """A security lockdown flag is present for the account."""

    status_code = 403
    code = "account_locked"
    default_public_message = "Account is locked. Contact an administrator."


class ConflictError(AuthError):
    """Requested state already holds (e.g. TOTP already enabled)."""

    status_code = 409
    code = "conflict"
    default_public_message = "Request conflicts with the current state."


class DependencyError(AuthError):
    """The ephemeral store (or another backing service) is unreachable or timed out.

    Surfaces as 503. No retry is attempted here -- callers may retry at the
    transport level.
    """

    status_code = 503
    code = "dependency_unavailable"
    default_public_message = "Service temporarily unavailable. Please try again."


def token_hint(token: str | None, length: int = 8) -> str:
    """Return a log-safe prefix of a token ("abcdefgh..."); never the full value."""
    if not token:
        return "<empty>"
    return token[:length] + "..."
