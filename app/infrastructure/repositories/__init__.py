"""Repositories wrapping an AsyncSession per aggregate."""

from app.infrastructure.repositories.carts import CartRepository
from app.infrastructure.repositories.orders import OrderRepository
from app.infrastructure.repositories.outbox import OutboxRepository, WebhookEventRepository
from app.infrastructure.repositories.promos import PromoRepository
from app.infrastructure.repositories.sessions import DeviceSessionRepository
from app.infrastructure.repositories.users import UserRepository

__all__ = [
    "CartRepository",
    "DeviceSessionRepository",
    "OrderRepository",
    "OutboxRepository",
    "PromoRepository",
    "UserRepository",
    "WebhookEventRepository",
]
