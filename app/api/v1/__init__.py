"""API v1 routes."""

from fastapi import APIRouter

from app.api.v1 import audit, auth, contexts, delegations, health, permissions, session, users

router = APIRouter()
router.include_router(health.router, prefix="/health", tags=["health"])
router.include_router(auth.router, prefix="/auth", tags=["auth"])
router.include_router(session.router, prefix="/session", tags=["session"])
router.include_router(permissions.router, prefix="/permissions", tags=["permissions"])
router.include_router(delegations.router, prefix="/delegations", tags=["delegations"])
router.include_router(contexts.router, prefix="/contexts", tags=["contexts"])
router.include_router(users.router, prefix="/users", tags=["users"])
router.include_router(audit.router, prefix="/audit", tags=["audit"])
