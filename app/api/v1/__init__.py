from fastapi import APIRouter

from app.api.v1.routers import (
    activities,
    auth,
    documents,
    health,
    loans,
    notifications,
    programs,
    tasks,
)

api_router = APIRouter()
api_router.include_router(health.router)
api_router.include_router(auth.router)
api_router.include_router(loans.router)
api_router.include_router(documents.router)
api_router.include_router(programs.router)
api_router.include_router(notifications.router)
api_router.include_router(tasks.router)
api_router.include_router(activities.router)

__all__ = ["api_router"]
