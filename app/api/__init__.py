"""API layer module.

Contains FastAPI routers and request/response schemas.
"""

from app.api.auth import router as auth_router
from app.api.cart import router as cart_router
from app.api.checkout import router as checkout_router
from app.api.health import router as health_router
from app.api.internal import router as internal_router
from app.api.orders import router as orders_router
from app.api.sessions import router as sessions_router
from app.api.webhooks import router as webhooks_router

__all__ = [
    "auth_router",
    "cart_router",
    "checkout_router",
    "health_router",
    "internal_router",
    "orders_router",
    "sessions_router",
    "webhooks_router",
]
