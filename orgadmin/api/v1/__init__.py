"""
API v1 Router

Admin endpoints live under /admin, the role/permission matrix under /rbac.
"""

from fastapi import APIRouter

from . import admin_users, organizations, rbac, sessions

router = APIRouter()

router.include_router(admin_users.router, prefix="/admin/users", tags=["Admin Users"])
router.include_router(sessions.router, prefix="/admin/sessions", tags=["Admin Sessions"])
router.include_router(
    organizations.router, prefix="/admin/organizations", tags=["Admin Organizations"]
)
router.include_router(rbac.router, prefix="/rbac", tags=["RBAC"])


@router.get("/", tags=["API"])
async def api_root():
    """API root: version and available endpoints."""
    return {
        "api": "v1",
        "version": "0.1.0",
        "endpoints": [
            "/admin/users",
            "/admin/sessions",
            "/admin/organizations",
            "/rbac",
        ],
    }
