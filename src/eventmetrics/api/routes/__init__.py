"""API routers."""

from .jobs import router as jobs_router
from .pages import router as pages_router

__all__ = ["jobs_router", "pages_router"]
