from fastapi import APIRouter

from app.api.v1.routers import admin, auth, health, loans, payments, roles, support, users

api_router = APIRouter()
api_router.include_router(health.router)
api_router.include_router(auth.router)
api_router.include_router(loans.router)
api_router.include_router(payments.router)
api_router.include_router(admin.router)
api_router.include_router(roles.router)
api_router.include_router(support.router)
api_router.include_router(users.router)

__all__ = ["api_router"]
