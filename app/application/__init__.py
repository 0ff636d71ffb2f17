"""Application layer module.

Contains application services (use cases) that orchestrate
domain logic and infrastructure.
"""

from app.application.auth_service import AuthResult, AuthService
from app.application.cart_service import CartLedger, PurgeResult
from app.application.identity_service import AdoptionResult, IdentityResolver
from app.application.order_service import (
    Confirmation,
    CreatedOrder,
    OrderStateMachine,
    get_order_service,
)
from app.application.outbox_service import DrainResult, OutboxRelay, drain_outbox
from app.application.promo_service import PromoService
from app.application.session_service import SessionListing, SessionPolicy, SessionRegistry
from app.application.webhook_service import WebhookService, get_webhook_service

__all__ = [
    "AdoptionResult",
    "AuthResult",
    "AuthService",
    "CartLedger",
    "Confirmation",
    "CreatedOrder",
    "DrainResult",
    "IdentityResolver",
    "OrderStateMachine",
    "OutboxRelay",
    "PromoService",
    "PurgeResult",
    "SessionListing",
    "SessionPolicy",
    "SessionRegistry",
    "WebhookService",
    "drain_outbox",
    "get_order_service",
    "get_webhook_service",
]
