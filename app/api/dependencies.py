"""Request-scoped dependencies and cookie helpers."""

from typing import Annotated

from fastapi import BackgroundTasks, Depends, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from app.application.identity_service import IdentityResolver
from app.application.outbox_service import drain_outbox
from app.domain.exceptions import AuthenticationRequiredError
from app.domain.value_objects import Identity
from app.infrastructure.config import settings
from app.infrastructure.database import get_session

SESSION_COOKIE = "session_token"
CART_COOKIE = "cart_token"
ORDER_COOKIE = "order_token"
CART_HEADER = "X-Cart-Token"

SessionDep = Annotated[AsyncSession, Depends(get_session)]


# ============================================================================
# Bearer extraction
# ============================================================================


def read_session_token(request: Request) -> str | None:
    """Session bearer from the cookie or an ``Authorization: Bearer`` header."""
    token = request.cookies.get(SESSION_COOKIE)
    if token:
        return token
    auth_header = request.headers.get("Authorization", "")
    parts = auth_header.split(" ", 1)
    if len(parts) == 2 and parts[0].lower() == "bearer" and parts[1].strip():
        return parts[1].strip()
    return None


def read_cart_token(request: Request) -> str | None:
    return request.cookies.get(CART_COOKIE) or request.headers.get(CART_HEADER)


def read_order_token(request: Request) -> str | None:
    return request.cookies.get(ORDER_COOKIE)


# ============================================================================
# Cookies
# ============================================================================


def _set_cookie(response: Response, name: str, value: str, max_age_days: int) -> None:
    response.set_cookie(
        name,
        value,
        max_age=max_age_days * 24 * 3600,
        httponly=True,
        secure=settings.cookie_secure,
        samesite="lax",
        path="/",
    )


def set_session_cookie(response: Response, token: str) -> None:
    _set_cookie(response, SESSION_COOKIE, token, settings.session_cookie_max_age_days)


def set_cart_cookie(response: Response, token: str) -> None:
    _set_cookie(response, CART_COOKIE, token, settings.cart_token_max_age_days)


def set_order_cookie(response: Response, token: str) -> None:
    _set_cookie(response, ORDER_COOKIE, token, settings.cart_token_max_age_days)


def clear_cookie(response: Response, name: str) -> None:
    response.delete_cookie(name, path="/")


# ============================================================================
# Identity
# ============================================================================


async def get_identity(request: Request, response: Response, session: SessionDep) -> Identity:
    """Resolve the caller and persist a freshly minted cart token.

    Args:
        request: Incoming request.
        response: Response the cart cookie is written to.
        session: Request-scoped database session.

    Returns:
        The resolved identity.
    """
    identity = await IdentityResolver(session).resolve(
        read_session_token(request), read_cart_token(request)
    )
    if identity.cart_token_minted:
        set_cart_cookie(response, identity.cart_token)
    request.state.identity = identity
    return identity


IdentityDep = Annotated[Identity, Depends(get_identity)]


async def require_principal(identity: IdentityDep) -> Identity:
    """Identity of an authenticated caller.

    Raises:
        AuthenticationRequiredError: For anonymous callers.
    """
    if not identity.is_authenticated:
        raise AuthenticationRequiredError()
    return identity


PrincipalDep = Annotated[Identity, Depends(require_principal)]


# ============================================================================
# Outbox
# ============================================================================


def schedule_outbox_drain(background_tasks: BackgroundTasks) -> None:
    """Deliver staged events after the response is sent."""
    if settings.outbox_drain_inline:
        background_tasks.add_task(drain_outbox)
