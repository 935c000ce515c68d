# API Routes
from .escalation_routes import router as escalation_router
from .webhook_routes import router as webhook_router
from .user_routes import router as user_router
from .contact_routes import router as contact_router

__all__ = [
    "escalation_router",
    "webhook_router",
    "user_router",
    "contact_router",
]
