"""
Error taxonomy for the credential core.

Each error carries the HTTP status and a stable error code the API layer
renders. Messages for authentication failures are deliberately generic so a
caller cannot tell which field was wrong.
"""

from typing import Optional


class AuthError(Exception):
    """Base class for credential and session errors mapped to HTTP responses."""

    status_code: int = 400
    error_code: str = "bad_request"
    default_message: str = "Request could not be processed"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidCredentials(AuthError):
    """Unknown email or wrong password. Never says which."""

    status_code = 401
    error_code = "invalid_credentials"
    default_message = "Invalid email or password"


class TokenRejected(AuthError):
    """Refresh token absent, expired, revoked or already rotated."""

    status_code = 401
    error_code = "token_rejected"
    default_message = "Invalid or expired refresh token"


class CodeRejected(AuthError):
    """Reset code absent, expired, already used, or not issued for this email."""

    status_code = 401
    error_code = "code_rejected"
    default_message = "Invalid or expired reset code."


class DuplicateAccount(AuthError):
    status_code = 409
    error_code = "duplicate_account"
    default_message = "User with this email already exists"


class RegistrationUnavailable(AuthError):
    """The default role is missing, so new accounts cannot be created."""

    status_code = 400
    error_code = "registration_unavailable"
    default_message = "Default role not found. Please seed the database."


class ConfigurationFatal(AuthError):
    """Startup configuration is unusable. The process must not serve traffic."""

    status_code = 500
    error_code = "configuration_error"
    default_message = "Service is misconfigured"


class UpstreamUnavailable(AuthError):
    """Principal directory or notifier could not be reached."""

    status_code = 503
    error_code = "upstream_unavailable"
    default_message = "A dependent service is unavailable"


__all__ = [
    "AuthError",
    "InvalidCredentials",
    "TokenRejected",
    "CodeRejected",
    "DuplicateAccount",
    "RegistrationUnavailable",
    "ConfigurationFatal",
    "UpstreamUnavailable",
]
