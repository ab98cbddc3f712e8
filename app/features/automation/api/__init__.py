from .outbox_router import router as outbox_router
from .router import router as automation_router

__all__ = ["automation_router", "outbox_router"]
