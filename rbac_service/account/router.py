"""
Account router.

Every route here sits behind the authentication gate; any role may use them.
"""
from fastapi import APIRouter, Depends

from rbac_service.base_microservice import BaseMicroservice
from rbac_service.auth.middleware import AuthenticatedUser, get_current_user
from rbac_service.auth.users import ProfileUpdate, UserOut, UserService, get_user_service

router = APIRouter(tags=["user"], dependencies=[Depends(get_current_user)])
base_service = BaseMicroservice("account")


@router.get("/me")
async def get_current_user_info(
    user: AuthenticatedUser = Depends(get_current_user),
    service: UserService = Depends(get_user_service),
):
    """Get information about the current authenticated user."""
    identity = await service.get_identity(user.user_id)
    return base_service.mcp_response(
        message="User information retrieved successfully",
        data={"user": UserOut.from_identity(identity)},
    )


@router.get("/profile")
async def get_profile(
    user: AuthenticatedUser = Depends(get_current_user),
    service: UserService = Depends(get_user_service),
):
    identity = await service.get_identity(user.user_id)
    return base_service.mcp_response(
        message="Profile retrieved successfully",
        data={"profile": UserOut.from_identity(identity)},
    )


@router.put("/profile")
async def update_profile(
    update_data: ProfileUpdate,
    user: AuthenticatedUser = Depends(get_current_user),
    service: UserService = Depends(get_user_service),
):
    """
    Update the current user's name and/or password.

    Email and role cannot be changed here; such fields are rejected.
    """
    identity = await service.update_profile(user.user_id, update_data)

    base_service.log_event("user.updated", {
        "id": user.user_id,
        "fields_updated": sorted(update_data.model_dump(exclude_unset=True).keys()),
    })

    return base_service.mcp_response(
        message="Profile updated successfully",
        data={"profile": UserOut.from_identity(identity)},
    )


@router.get("/dashboard")
async def get_user_dashboard(user: AuthenticatedUser = Depends(get_current_user)):
    """Personal dashboard built from the identity in the access token."""
    return base_service.mcp_response(
        message="User Dashboard",
        data={
            "user_id": user.user_id,
            "user_email": user.email,
            "user_role": user.role,
            "welcome_message": "Welcome to your personal dashboard!",
        },
    )
