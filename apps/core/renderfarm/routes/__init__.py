"""Route modules."""

from .internal import router as internal_router
from .tasks import router as tasks_router

__all__ = ["internal_router", "tasks_router"]
