"""
Authentication and authorization errors.

Every error here is terminal for the current request. The exception
handlers registered in main.py turn them into the standard error envelope.
"""
from typing import Optional


class AuthServiceError(Exception):
    """Base class for errors surfaced to API clients."""
    status_code = 500
    detail = "Internal server error"

    def __init__(self, detail: Optional[str] = None):
        if detail is not None:
            self.detail = detail
        super().__init__(self.detail)


# --- Token validation ---

class TokenError(AuthServiceError):
    """A token failed validation."""
    status_code = 401
    detail = "Invalid token"


class MalformedToken(TokenError):
    detail = "Malformed token"


class InvalidSignature(TokenError):
    detail = "Invalid token signature"


class TokenExpired(TokenError):
    detail = "Token has expired"


class PurposeMismatch(TokenError):
    detail = "Token purpose mismatch"


# --- Credentials and identities ---

class InvalidCredentials(AuthServiceError):
    status_code = 401
    detail = "Invalid credentials"


class EmailTaken(AuthServiceError):
    status_code = 409
    detail = "Email already registered"


class NotFound(AuthServiceError):
    status_code = 404
    detail = "User not found"


# --- Gates ---

class Unauthorized(AuthServiceError):
    status_code = 401
    detail = "Could not validate credentials"


class Forbidden(AuthServiceError):
    status_code = 403
    detail = "Insufficient permissions"


# --- Datastore ---

class StoreUnavailable(AuthServiceError):
    """Transient datastore failure; the client may retry."""
    status_code = 503
    detail = "Service temporarily unavailable"
    retry_after = 5
