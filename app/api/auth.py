"""Authentication API endpoints.

Provides:
- POST /auth/register - create an unverified account
- POST /auth/send-code - re-send the email verification code
- POST /auth/verify-email - verify the email and open a session
- POST /auth/login - open a session with email and password
- POST /auth/logout - revoke the current session
- POST /auth/change-password - replace the password of the signed-in account
- POST /auth/password-reset/request - email a password reset code
- POST /auth/password-reset/validate - check a password reset code
- POST /auth/password-reset/confirm - set a new password with a reset code

Successful verification and login adopt the anonymous cart and bind
guest orders presented with the request.
"""

import structlog
from fastapi import APIRouter, BackgroundTasks, Request, Response, status

from app.api.dependencies import (
    ORDER_COOKIE,
    PrincipalDep,
    SESSION_COOKIE,
    SessionDep,
    clear_cookie,
    read_cart_token,
    read_order_token,
    read_session_token,
    schedule_outbox_drain,
    set_session_cookie,
)
from app.api.fingerprint import fingerprint_from_request
from app.api.schemas import (
    AuthResponse,
    ChangePasswordRequest,
    CodeSentResponse,
    EmailRequest,
    ErrorResponse,
    LoginRequest,
    PasswordResetCodeRequest,
    PasswordResetConfirmRequest,
    PrincipalSchema,
    RegisterRequest,
    RegisterResponse,
    SuccessResponse,
    VerifyEmailRequest,
)
from app.application.auth_service import AuthResult, AuthService
from app.application.identity_service import IdentityResolver
from app.application.session_service import SessionRegistry
from app.domain.entities import Principal

logger = structlog.get_logger()

router = APIRouter(prefix="/auth", tags=["Auth"])


# ============================================================================
# Converters
# ============================================================================


def principal_to_schema(principal: Principal) -> PrincipalSchema:
    return PrincipalSchema(
        id=principal.id,
        email=principal.email,
        full_name=principal.full_name,
        role=principal.role.value,
        verified=principal.is_verified,
    )


async def _complete_authentication(
    request: Request,
    response: Response,
    session: SessionDep,
    result: AuthResult,
) -> AuthResponse:
    """Set the session cookie and adopt anonymous state."""
    set_session_cookie(response, result.session_token)

    order_token = read_order_token(request)
    adoption = await IdentityResolver(session).on_authenticated(
        result.principal.id,
        read_cart_token(request),
        order_token,
    )
    if order_token:
        clear_cookie(response, ORDER_COOKIE)

    return AuthResponse(
        user=principal_to_schema(result.principal),
        cart_id=adoption.cart.id if adoption.cart else None,
        bound_orders=adoption.bound_orders,
    )


# ============================================================================
# Endpoints
# ============================================================================


@router.post(
    "/register",
    response_model=RegisterResponse,
    status_code=status.HTTP_201_CREATED,
    responses={409: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
    summary="Register",
)
async def register(
    body: RegisterRequest,
    session: SessionDep,
    background_tasks: BackgroundTasks,
) -> RegisterResponse:
    """Create an unverified account and email a verification code."""
    principal = await AuthService(session).register(body.email, body.password, body.full_name)
    schedule_outbox_drain(background_tasks)
    return RegisterResponse(user=principal_to_schema(principal))


@router.post(
    "/send-code",
    response_model=CodeSentResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Send verification code",
)
async def send_code(
    body: EmailRequest,
    session: SessionDep,
    background_tasks: BackgroundTasks,
) -> CodeSentResponse:
    sent = await AuthService(session).send_verification_code(body.email)
    schedule_outbox_drain(background_tasks)
    return CodeSentResponse(sent=sent)


@router.post(
    "/verify-email",
    response_model=AuthResponse,
    responses={404: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
    summary="Verify email",
)
async def verify_email(
    body: VerifyEmailRequest,
    request: Request,
    response: Response,
    session: SessionDep,
    background_tasks: BackgroundTasks,
) -> AuthResponse:
    """Verify the email, open a session and adopt anonymous state."""
    fingerprint, geo = fingerprint_from_request(request)
    result = await AuthService(session).verify_email(body.email, body.code, fingerprint, geo)
    schedule_outbox_drain(background_tasks)
    return await _complete_authentication(request, response, session, result)


@router.post(
    "/login",
    response_model=AuthResponse,
    responses={401: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
    summary="Log in",
)
async def login(
    body: LoginRequest,
    request: Request,
    response: Response,
    session: SessionDep,
    background_tasks: BackgroundTasks,
) -> AuthResponse:
    """Check credentials, open a session and adopt anonymous state."""
    fingerprint, geo = fingerprint_from_request(request)
    result = await AuthService(session).login(body.email, body.password, fingerprint, geo)
    schedule_outbox_drain(background_tasks)
    return await _complete_authentication(request, response, session, result)


@router.post("/logout", response_model=SuccessResponse, summary="Log out")
async def logout(request: Request, response: Response, session: SessionDep) -> SuccessResponse:
    """Revoke the current session. Never fails for an absent session."""
    await SessionRegistry(session).revoke(read_session_token(request))
    clear_cookie(response, SESSION_COOKIE)
    return SuccessResponse()


# ============================================================================
# Password management
# ============================================================================


@router.post(
    "/change-password",
    response_model=SuccessResponse,
    responses={401: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
    summary="Change password",
)
async def change_password(
    body: ChangePasswordRequest,
    identity: PrincipalDep,
    session: SessionDep,
) -> SuccessResponse:
    await AuthService(session).change_password(
        identity.principal_id, body.current_password, body.new_password
    )
    return SuccessResponse()


@router.post(
    "/password-reset/request",
    response_model=SuccessResponse,
    responses={401: {"model": ErrorResponse}},
    summary="Request password reset code",
)
async def request_password_reset(
    identity: PrincipalDep,
    session: SessionDep,
    background_tasks: BackgroundTasks,
) -> SuccessResponse:
    """Email a six-digit reset code to the signed-in account."""
    await AuthService(session).request_password_reset(identity.principal_id)
    schedule_outbox_drain(background_tasks)
    return SuccessResponse()


@router.post(
    "/password-reset/validate",
    response_model=SuccessResponse,
    responses={401: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
    summary="Validate password reset code",
)
async def validate_password_reset(
    body: PasswordResetCodeRequest,
    identity: PrincipalDep,
    session: SessionDep,
) -> SuccessResponse:
    await AuthService(session).validate_password_reset(identity.principal_id, body.code)
    return SuccessResponse()


@router.post(
    "/password-reset/confirm",
    response_model=SuccessResponse,
    responses={401: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
    summary="Reset password",
)
async def confirm_password_reset(
    body: PasswordResetConfirmRequest,
    identity: PrincipalDep,
    session: SessionDep,
) -> SuccessResponse:
    """Set a new password with a reset code. The code is used up."""
    await AuthService(session).reset_password(identity.principal_id, body.code, body.new_password)
    return SuccessResponse()
