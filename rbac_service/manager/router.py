"""
Manager router.

Reports and the manager dashboard, open to admins and managers.
"""
from fastapi import APIRouter, Depends

from rbac_service.base_microservice import BaseMicroservice
from rbac_service.auth.middleware import MANAGER_ROLES, RBACMiddleware
from rbac_service.auth.users import UserService, get_user_service

router = APIRouter(tags=["manager"], dependencies=[Depends(RBACMiddleware.has_roles(MANAGER_ROLES))])
base_service = BaseMicroservice("manager")


@router.get("/reports")
async def get_reports(service: UserService = Depends(get_user_service)):
    """Users grouped by role."""
    reports = await service.reports()
    return base_service.mcp_response(message="Reports retrieved successfully", data={"reports": reports})


@router.get("/dashboard")
async def get_manager_dashboard(service: UserService = Depends(get_user_service)):
    """Total users and the five most recent sign-ups."""
    stats = await service.manager_stats(recent=5)
    return base_service.mcp_response(message="Manager Dashboard", data=stats)
