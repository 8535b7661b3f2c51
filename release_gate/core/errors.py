"""
Error taxonomy for executor verification and grant checks.
Caller input errors carry the HTTP status the API layer surfaces verbatim.
"""


class ReleaseAccessError(Exception):
    """Base class for errors surfaced to the verifying executor."""

    error_type = "RELEASE_ACCESS_ERROR"
    status_code = 400
    default_message = "Release access request rejected"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class NotAnExecutor(ReleaseAccessError):
    error_type = "NOT_AN_EXECUTOR"
    status_code = 403
    default_message = "You do not have access to this account"


class NotLocked(ReleaseAccessError):
    error_type = "NOT_LOCKED"
    status_code = 401
    default_message = "Account is not locked or access code not set"


class InvalidCode(ReleaseAccessError):
    error_type = "INVALID_CODE"
    status_code = 401
    default_message = "Invalid access code"


class WrongExecutor(ReleaseAccessError):
    error_type = "WRONG_EXECUTOR"
    status_code = 403
    default_message = "You are not the designated executor for this account"


class GrantInvalid(ReleaseAccessError):
    error_type = "GRANT_INVALID"
    status_code = 401
    default_message = "Invalid or expired executor session"


class InsufficientPermissions(ReleaseAccessError):
    error_type = "INSUFFICIENT_PERMISSIONS"
    status_code = 403
    default_message = "Insufficient permissions"


class PersistenceError(ReleaseAccessError):
    """Storage was unavailable. The caller must retry the whole verification."""

    error_type = "PERSISTENCE_UNAVAILABLE"
    status_code = 503
    default_message = "Release store unavailable, please retry"


class SendTimeout(Exception):
    """A notification send did not finish within its bound."""
