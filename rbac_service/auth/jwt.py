"""
JWT token handling for authentication.

This module provides functionality for:
- Issuing signed, expiring tokens tagged with a purpose (access, refresh, reset)
- Verifying signature, expiry and purpose of incoming tokens
- Building the access/refresh pair returned on login
"""
import time
from datetime import timedelta
from enum import Enum
from functools import lru_cache
from typing import Optional, Dict, Any

import jwt
from jwt.exceptions import (
    PyJWTError,
    InvalidSignatureError,
    InvalidAlgorithmError,
    DecodeError,
)
from pydantic import BaseModel, ConfigDict, ValidationError

from rbac_service.config import get_settings
from rbac_service.auth.exceptions import (
    MalformedToken,
    InvalidSignature,
    TokenExpired,
    PurposeMismatch,
)

ALGORITHM = "HS256"
REQUIRED_CLAIMS = ["user_id", "email", "role", "purpose", "iat", "exp"]


class TokenPurpose(str, Enum):
    """What a token may be used for. A token is only accepted for its own purpose."""
    ACCESS = "access"
    REFRESH = "refresh"
    RESET = "reset"


TOKEN_TTL: Dict[TokenPurpose, timedelta] = {
    TokenPurpose.ACCESS: timedelta(hours=24),
    TokenPurpose.REFRESH: timedelta(days=7),
    TokenPurpose.RESET: timedelta(hours=1),
}


class TokenClaims(BaseModel):
    """Token payload model."""
    model_config = ConfigDict(frozen=True)

    user_id: int
    email: str
    role: str
    purpose: TokenPurpose
    iat: int  # Issued at, unix seconds
    exp: int  # Expires at, unix seconds


class Token(BaseModel):
    """Token response model."""
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int  # Seconds until the access token expires


class AccessToken(BaseModel):
    """Response model for a refreshed access token."""
    access_token: str
    token_type: str = "bearer"
    expires_in: int


class TokenCodec:
    """
    Creates and parses signed tokens.

    The signing secret is handed in once and kept for the lifetime of the
    codec. Issuing and decoding are pure in-memory operations.
    """

    def __init__(self, secret: str, algorithm: str = ALGORITHM):
        if not secret:
            raise ValueError("A signing secret is required")
        self._secret = secret
        self.algorithm = algorithm

    def issue(
        self,
        user_id: int,
        email: str,
        role: str,
        purpose: TokenPurpose,
        ttl: Optional[timedelta] = None,
        now: Optional[float] = None,
    ) -> str:
        """
        Create a signed token.

        Args:
            user_id: Identity the token is issued for
            email: Identity's email
            role: Identity's role name
            purpose: What the token may be used for
            ttl: Lifetime, defaults to the policy for the purpose
            now: Issue time as unix seconds, defaults to the current time

        Returns:
            Compact JWT string

        Raises:
            ValueError: If ttl is not positive
        """
        purpose = TokenPurpose(purpose)
        ttl = TOKEN_TTL[purpose] if ttl is None else ttl
        lifetime = int(ttl.total_seconds())
        if lifetime <= 0:
            raise ValueError("Token ttl must be positive")

        issued_at = int(time.time() if now is None else now)
        claims = TokenClaims(
            user_id=user_id,
            email=email,
            role=role,
            purpose=purpose,
            iat=issued_at,
            exp=issued_at + lifetime,
        )
        return jwt.encode(claims.model_dump(mode="json"), self._secret, algorithm=self.algorithm)

    def decode(self, token: str) -> TokenClaims:
        """
        Verify the signature of a token and return its claims.

        Expiry and purpose are not checked here; see TokenValidator.

        Raises:
            InvalidSignature: If the signature does not match the secret
            MalformedToken: If the token is not a well-formed JWT with our claims
        """
        try:
            payload: Dict[str, Any] = jwt.decode(
                token,
                self._secret,
                algorithms=[self.algorithm],
                options={
                    "verify_exp": False,
                    "verify_iat": False,
                    "require": REQUIRED_CLAIMS,
                },
            )
        except (InvalidSignatureError, InvalidAlgorithmError) as exc:
            raise InvalidSignature() from exc
        except DecodeError as exc:
            raise MalformedToken() from exc
        except PyJWTError as exc:
            # Missing or unparseable registered claims
            raise MalformedToken() from exc

        try:
            return TokenClaims.model_validate(payload)
        except ValidationError as exc:
            raise MalformedToken() from exc

    def issue_session(self, user_id: int, email: str, role: str) -> Token:
        """
        Create both access and refresh tokens for a user.

        Returns:
            Token object with access_token, refresh_token and metadata
        """
        return Token(
            access_token=self.issue(user_id, email, role, TokenPurpose.ACCESS),
            refresh_token=self.issue(user_id, email, role, TokenPurpose.REFRESH),
            expires_in=int(TOKEN_TTL[TokenPurpose.ACCESS].total_seconds()),
        )


class TokenValidator:
    """
    Single choke point for accepting a token.

    Checks run in a fixed order and each failure is terminal:
    signature, then expiry, then purpose.
    """

    def __init__(self, codec: TokenCodec):
        self.codec = codec

    def parse_and_verify(
        self,
        token: str,
        expected_purpose: TokenPurpose,
        now: Optional[float] = None,
    ) -> TokenClaims:
        """
        Verify a token and return its claims.

        Args:
            token: Compact JWT string
            expected_purpose: Purpose the caller is about to use the token for
            now: Validation time as unix seconds, defaults to the current time

        Raises:
            MalformedToken, InvalidSignature, TokenExpired, PurposeMismatch
        """
        claims = self.codec.decode(token)

        current = time.time() if now is None else now
        # Expired at the exact expiry instant
        if current >= claims.exp:
            raise TokenExpired()

        if claims.purpose != TokenPurpose(expected_purpose):
            raise PurposeMismatch()

        return claims


@lru_cache
def get_token_codec() -> TokenCodec:
    """Return the process-wide codec bound to the configured secret."""
    settings = get_settings()
    return TokenCodec(settings.jwt_secret, settings.jwt_algorithm)


@lru_cache
def get_token_validator() -> TokenValidator:
    """Return the process-wide validator."""
    return TokenValidator(get_token_codec())
