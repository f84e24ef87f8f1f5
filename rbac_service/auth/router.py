"""
Authentication router.

This module provides the FastAPI router for authentication endpoints:
- User registration and login
- Logout and token refresh
- Password reset
"""
from fastapi import APIRouter, Depends, status

from rbac_service.base_microservice import BaseMicroservice, Base, engine
from rbac_service.config import Settings, get_settings
from rbac_service.auth.exceptions import InvalidCredentials, TokenError, Unauthorized
from rbac_service.auth.jwt import (
    AccessToken,
    TOKEN_TTL,
    TokenCodec,
    TokenPurpose,
    TokenValidator,
    get_token_codec,
    get_token_validator,
)
from rbac_service.auth.store import Identity
from rbac_service.auth.users import (
    LoginRequest,
    PasswordReset,
    PasswordResetConfirm,
    RefreshRequest,
    RegisterRequest,
    UserOut,
    UserService,
    get_user_service,
    init_roles_and_permissions,
    warm_dummy_hash,
)

# Create router
router = APIRouter(tags=["auth"])

# Create service instance
base_service = BaseMicroservice("auth")

RESET_REQUESTED_MESSAGE = "If the email exists, a password reset link has been sent"


async def start_auth_service(settings: Settings):
    """Initialize the auth service: tables (outside production), default roles and the login timing hash."""
    base_service.log_event("service.startup", {"service": "auth"})

    if settings.auto_create_tables:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        base_service.logger.info("Ensured database tables exist")

    await init_roles_and_permissions()
    await warm_dummy_hash(settings.bcrypt_rounds)

    if settings.expose_reset_token:
        base_service.logger.warning(
            "EXPOSE_RESET_TOKEN is enabled: password reset tokens are returned in API "
            "responses. Do not run this way in production."
        )


def deliver_reset_token(identity: Identity, token: str) -> None:
    """
    Hand a reset token to the out-of-band delivery channel.

    No mail transport is wired in; the issuance is recorded without the token.
    """
    base_service.log_event("password.reset.requested", {"user_id": identity.id})


# --- Basic Auth Endpoints ---

@router.post("/register", status_code=status.HTTP_201_CREATED)
async def register_user(
    user_data: RegisterRequest,
    service: UserService = Depends(get_user_service),
):
    """
    Register a new user with the default role.

    Returns:
        The created user
    """
    identity = await service.register(user_data.name, user_data.email, user_data.password)

    base_service.log_event("user.registered", {"id": identity.id, "email": identity.email})

    return base_service.mcp_response(
        message="User registered successfully",
        data={"user": UserOut.from_identity(identity)},
        status_code=status.HTTP_201_CREATED,
    )


@router.post("/login")
async def login(
    credentials: LoginRequest,
    service: UserService = Depends(get_user_service),
    codec: TokenCodec = Depends(get_token_codec),
):
    """
    Authenticate a user and return an access/refresh token pair.
    """
    try:
        identity = await service.authenticate(credentials.email, credentials.password)
    except InvalidCredentials:
        # Log failed login attempt
        base_service.log_event("user.login.failed", {"email": credentials.email})
        raise

    tokens = codec.issue_session(identity.id, identity.email, identity.role)

    base_service.log_event("user.login", {"id": identity.id, "role": identity.role})

    return base_service.mcp_response(
        message="Login successful",
        data={
            "access_token": tokens.access_token,
            "refresh_token": tokens.refresh_token,
            "token_type": tokens.token_type,
            "expires_in": tokens.expires_in,
            "user": UserOut.from_identity(identity),
        },
    )


@router.post("/logout")
async def logout():
    """
    Tokens are stateless; clients drop them. Nothing is revoked server-side.
    """
    return base_service.mcp_response(message="Logged out successfully")


@router.post("/refresh")
async def refresh_token(
    body: RefreshRequest,
    service: UserService = Depends(get_user_service),
    codec: TokenCodec = Depends(get_token_codec),
    validator: TokenValidator = Depends(get_token_validator),
):
    """
    Exchange a refresh token for a new access token.

    The new token carries the user's current role, not the one in the refresh token.
    """
    try:
        claims = validator.parse_and_verify(body.refresh_token, TokenPurpose.REFRESH)
    except TokenError as e:
        base_service.logger.warning(f"Refresh rejected: {e.__class__.__name__}")
        raise Unauthorized("Invalid or expired refresh token") from e

    identity = await service.get_identity(claims.user_id)
    access_token = codec.issue(identity.id, identity.email, identity.role, TokenPurpose.ACCESS)

    base_service.log_event("token.refreshed", {"id": identity.id})

    return base_service.mcp_response(
        message="Token refreshed successfully",
        data=AccessToken(
            access_token=access_token,
            expires_in=int(TOKEN_TTL[TokenPurpose.ACCESS].total_seconds()),
        ),
    )


@router.post("/forgot-password")
async def forgot_password(
    body: PasswordReset,
    service: UserService = Depends(get_user_service),
    codec: TokenCodec = Depends(get_token_codec),
    settings: Settings = Depends(get_settings),
):
    """
    Start a password reset.

    The response does not reveal whether the email is registered unless
    reset tokens are exposed for client compatibility.
    """
    identity = await service.find_by_email(body.email)
    if identity is None:
        return base_service.mcp_response(message=RESET_REQUESTED_MESSAGE)

    reset_token = codec.issue(identity.id, identity.email, identity.role, TokenPurpose.RESET)
    deliver_reset_token(identity, reset_token)

    if settings.expose_reset_token:
        return base_service.mcp_response(
            message="Password reset token generated",
            data={
                "reset_token": reset_token,
                "note": "In production, this token should be sent via email",
            },
        )
    return base_service.mcp_response(message=RESET_REQUESTED_MESSAGE)


@router.post("/reset-password")
async def reset_password(
    body: PasswordResetConfirm,
    service: UserService = Depends(get_user_service),
    validator: TokenValidator = Depends(get_token_validator),
):
    """
    Set a new password using a reset token.
    """
    try:
        claims = validator.parse_and_verify(body.reset_token, TokenPurpose.RESET)
    except TokenError as e:
        base_service.logger.warning(f"Password reset rejected: {e.__class__.__name__}")
        raise Unauthorized("Invalid or expired reset token") from e

    new_hash = await service.hash(body.new_password)
    await service.reset_password(claims.user_id, new_hash)

    base_service.log_event("password.reset", {"id": claims.user_id})

    return base_service.mcp_response(message="Password reset successfully")
