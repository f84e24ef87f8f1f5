"""
Admin router.

User management and the admin dashboard. Only the admin role passes the gate.
"""
from fastapi import APIRouter, Depends, Query, status

from rbac_service.base_microservice import BaseMicroservice
from rbac_service.auth.middleware import ADMIN_ROLES, AuthenticatedUser, RBACMiddleware
from rbac_service.auth.users import (
    AdminUserCreate,
    AdminUserUpdate,
    UserOut,
    UserService,
    get_user_service,
)

require_admin = RBACMiddleware.has_roles(ADMIN_ROLES)

router = APIRouter(tags=["admin"], dependencies=[Depends(require_admin)])
base_service = BaseMicroservice("admin")


@router.get("/users")
async def get_users(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    service: UserService = Depends(get_user_service),
):
    """
    List users, one page at a time.

    Args:
        page: 1-based page number
        limit: Page size
    """
    users, total = await service.list_identities(page, limit)
    return base_service.mcp_response(
        message="Users retrieved successfully",
        data={
            "users": [UserOut.from_identity(u) for u in users],
            "total": total,
            "page": page,
            "limit": limit,
        },
    )


@router.post("/users", status_code=status.HTTP_201_CREATED)
async def create_user(
    user_data: AdminUserCreate,
    admin: AuthenticatedUser = Depends(require_admin),
    service: UserService = Depends(get_user_service),
):
    """Create a user, optionally with a specific role."""
    identity = await service.create_identity(user_data)

    base_service.log_event("user.created", {
        "admin_id": admin.user_id,
        "id": identity.id,
        "role": identity.role,
    })

    return base_service.mcp_response(
        message="User created successfully",
        data={"user": UserOut.from_identity(identity)},
        status_code=status.HTTP_201_CREATED,
    )


@router.put("/users/{user_id}")
async def update_user(
    user_id: int,
    update_data: AdminUserUpdate,
    admin: AuthenticatedUser = Depends(require_admin),
    service: UserService = Depends(get_user_service),
):
    """Update name, email, password or role of a user."""
    identity = await service.update_identity(user_id, update_data)

    base_service.log_event("user.updated", {
        "admin_id": admin.user_id,
        "id": user_id,
        "fields_updated": sorted(update_data.model_dump(exclude_unset=True).keys()),
    })

    return base_service.mcp_response(
        message="User updated successfully",
        data={"user": UserOut.from_identity(identity)},
    )


@router.delete("/users/{user_id}")
async def delete_user(
    user_id: int,
    admin: AuthenticatedUser = Depends(require_admin),
    service: UserService = Depends(get_user_service),
):
    """Soft-delete a user."""
    await service.delete_identity(user_id)

    base_service.log_event("user.deleted", {"admin_id": admin.user_id, "id": user_id})

    return base_service.mcp_response(
        message="User deleted successfully",
        data={"user_id": user_id},
    )


@router.get("/dashboard")
async def get_admin_dashboard(service: UserService = Depends(get_user_service)):
    """User counts for the admin dashboard."""
    stats = await service.admin_stats()
    return base_service.mcp_response(message="Admin Dashboard", data={"stats": stats})
