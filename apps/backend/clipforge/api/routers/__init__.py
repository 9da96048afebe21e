"""API routers."""

from clipforge.api.routers.meta import router as meta_router
from clipforge.api.routers.uploads import router as uploads_router

__all__ = ["meta_router", "uploads_router"]
