"""Identity resolution and anonymous state adoption.

Derives the acting principal and the cart bearer token from request
credentials, and attaches anonymous carts and guest orders to a principal
once it authenticates.
"""

import re
from dataclasses import dataclass

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from app.application.cart_service import CartLedger
from app.application.session_service import SessionRegistry
from app.domain.entities import Cart
from app.domain.value_objects import Identity
from app.infrastructure.repositories import OrderRepository, UserRepository
from app.infrastructure.security import new_bearer_token

logger = structlog.get_logger()

BEARER_TOKEN_PATTERN = re.compile(r"^[A-Za-z0-9._:-]{8,128}$")


def is_well_formed_token(token: str | None) -> bool:
    """Whether a client-held bearer looks like one we issued."""
    return bool(token) and BEARER_TOKEN_PATTERN.match(token) is not None


@dataclass
class AdoptionResult:
    """Outcome of attaching anonymous state to a principal.

    Attributes:
        cart: The principal's cart, None if adoption failed.
        bound_orders: Number of guest orders attached.
    """

    cart: Cart | None = None
    bound_orders: int = 0


class IdentityResolver:
    """Resolves who is acting and adopts anonymous state on login.

    Example usage:
        resolver = IdentityResolver(session)
        identity = await resolver.resolve(session_token, cart_token)
        if identity.cart_token_minted:
            response.set_cookie("cart_token", identity.cart_token)
    """

    def __init__(
        self,
        session: AsyncSession,
        registry: SessionRegistry | None = None,
        ledger: CartLedger | None = None,
    ) -> None:
        """Initialize resolver.

        Args:
            session: Async SQLAlchemy session.
            registry: Session registry, built on ``session`` if omitted.
            ledger: Cart ledger, built on ``session`` if omitted.
        """
        self.session = session
        self.registry = registry or SessionRegistry(session)
        self.ledger = ledger or CartLedger(session)
        self.users = UserRepository(session)
        self.orders = OrderRepository(session)

    async def resolve(self, session_token: str | None, cart_token: str | None) -> Identity:
        """Resolve request credentials into an identity.

        Missing, unknown and revoked session bearers, and bearers whose
        principal was deleted, degrade to anonymous. A missing or
        malformed cart token is replaced by a freshly minted one.

        Args:
            session_token: Session bearer from the request.
            cart_token: Cart bearer from the request.

        Returns:
            The resolved identity.
        """
        principal_id = None
        session_id = None

        device_session = await self.registry.authenticate(session_token)
        if device_session is not None:
            user = await self.users.get(device_session.user_id)
            if user is not None and user.deleted_at is None:
                principal_id = user.id
                session_id = device_session.id
            else:
                logger.info(
                    "Session principal unavailable, treating as anonymous",
                    session_id=device_session.id,
                )

        minted = False
        if not is_well_formed_token(cart_token):
            cart_token = new_bearer_token()
            minted = True

        return Identity(
            principal_id=principal_id,
            cart_token=cart_token,
            cart_token_minted=minted,
            session_token=session_token if principal_id is not None else None,
            session_id=session_id,
        )

    async def adopt_cart(self, principal_id: int, cart_token: str | None) -> Cart:
        """Find or create the principal's cart.

        If the principal owns no cart and an unowned cart exists for the
        presented token, that cart is attached instead of creating a new
        one. Two carts are never merged.

        Args:
            principal_id: Authenticated account id.
            cart_token: Cart bearer presented before authentication.

        Returns:
            The principal's cart.
        """
        token = cart_token if is_well_formed_token(cart_token) else new_bearer_token()
        return await self.ledger.get_or_create(Identity(principal_id=principal_id, cart_token=token))

    async def bind_guest_orders(self, principal_id: int, order_token: str | None) -> int:
        """Attach unowned orders carrying ``order_token`` to a principal.

        Returns:
            Number of orders attached.
        """
        if not is_well_formed_token(order_token):
            return 0
        bound = await self.orders.bind_guest_orders(order_token, principal_id)
        await self.session.commit()
        if bound:
            logger.info("Guest orders bound", user_id=principal_id, count=bound)
        return bound

    async def on_authenticated(
        self,
        principal_id: int,
        cart_token: str | None,
        order_token: str | None,
    ) -> AdoptionResult:
        """Adopt anonymous state after login or email verification.

        Each step is independent. Failures are logged and do not affect
        the authentication that triggered them.

        Args:
            principal_id: Authenticated account id.
            cart_token: Cart bearer presented with the login request.
            order_token: Guest order bearer presented with the login request.

        Returns:
            What was adopted.
        """
        result = AdoptionResult()

        try:
            result.cart = await self.adopt_cart(principal_id, cart_token)
        except Exception:
            await self.session.rollback()
            logger.exception("Cart adoption failed", user_id=principal_id)

        try:
            result.bound_orders = await self.bind_guest_orders(principal_id, order_token)
        except Exception:
            await self.session.rollback()
            logger.exception("Guest order binding failed", user_id=principal_id)

        return result
