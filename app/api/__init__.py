"""API routes."""

from fastapi import APIRouter

from app.api import admin, audit, jobs, marriages, permissions, profiles, search, suggestions, undo

api_router = APIRouter()

# Include sub-routers
api_router.include_router(profiles.router, prefix="/profiles", tags=["profiles"])
api_router.include_router(marriages.router, prefix="/marriages", tags=["marriages"])
api_router.include_router(undo.router, prefix="/undo", tags=["undo"])
api_router.include_router(search.router, prefix="/search", tags=["search"])
api_router.include_router(suggestions.router, prefix="/suggestions", tags=["suggestions"])
api_router.include_router(permissions.router, prefix="/permissions", tags=["permissions"])
api_router.include_router(audit.router, prefix="/audit", tags=["audit"])
api_router.include_router(admin.router, prefix="/admin", tags=["admin"])
api_router.include_router(jobs.router, prefix="/jobs", tags=["jobs"])
