"""Versioned API router aggregating every module router."""

from fastapi import APIRouter

from marketplace.modules.audit.router import router as audit_router
from marketplace.modules.dispute.admin_router import admin_router as dispute_admin_router
from marketplace.modules.dispute.router import router as dispute_router

v1_router = APIRouter(prefix="/api/v1")
# Admin routes first: /disputes/admin must not be captured by /disputes/{dispute_id}
v1_router.include_router(dispute_admin_router)
v1_router.include_router(dispute_router)
v1_router.include_router(audit_router)
