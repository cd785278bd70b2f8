"""API routers."""

from health_diary.routers.entries import router as entries_router
from health_diary.routers.scheduler import router as scheduler_router
from health_diary.routers.users import router as users_router

__all__ = ["entries_router", "users_router", "scheduler_router"]
