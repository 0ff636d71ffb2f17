"""Account registration, email verification, login and password management."""

import re
import secrets
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.application.session_service import SessionRegistry
from app.domain.entities import DeviceSession, Principal, Role
from app.domain.events import PasswordResetCodeIssued, VerificationCodeIssued
from app.domain.exceptions import (
    AccountDisabledError,
    AccountExistsError,
    AuthenticationRequiredError,
    EmailNotVerifiedError,
    IncorrectPasswordError,
    InvalidCredentialsError,
    InvalidVerificationCodeError,
    PrincipalNotFoundError,
    ValidationError,
)
from app.domain.value_objects import Fingerprint, GeoLabel
from app.infrastructure.config import settings
from app.infrastructure.models import PasswordResetCodeModel, UserModel
from app.infrastructure.repositories import OutboxRepository, UserRepository
from app.infrastructure.repositories.users import principal_from_model
from app.infrastructure.security import hash_password, new_verification_code, verify_password

logger = structlog.get_logger()

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
CODE_PATTERN = re.compile(r"^\d{6}$")
MIN_PASSWORD_LENGTH = 8


def normalize_email(email: str | None) -> str:
    """Lowercase and trim an email, rejecting obviously malformed ones.

    Raises:
        ValidationError: If the email is malformed.
    """
    value = (email or "").strip().lower()
    if not EMAIL_PATTERN.match(value) or len(value) > 190:
        raise ValidationError("Invalid email", details={"email": email})
    return value


def check_new_password(password: str | None) -> None:
    """Reject passwords shorter than the minimum length.

    Raises:
        ValidationError: If the password is too short.
    """
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters"
        )


@dataclass
class AuthResult:
    """Outcome of a successful login or verification."""

    principal: Principal
    device_session: DeviceSession

    @property
    def session_token(self) -> str:
        return self.device_session.token


class AuthService:
    """Service for principals and their credentials.

    Example usage:
        auth = AuthService(session)
        await auth.register("shopper@example.com", "secret-pass", "Ann")
        result = await auth.verify_email("shopper@example.com", "123456", fingerprint)
    """

    def __init__(
        self,
        session: AsyncSession,
        registry: SessionRegistry | None = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        """Initialize service.

        Args:
            session: Async SQLAlchemy session.
            registry: Session registry used to open device sessions.
            clock: Source of the current time.
        """
        self.session = session
        self.registry = registry or SessionRegistry(session, clock=clock)
        self.clock = clock
        self.users = UserRepository(session)
        self.outbox = OutboxRepository(session)

    # ========================================================================
    # Registration
    # ========================================================================

    async def register(self, email: str, password: str, full_name: str = "") -> Principal:
        """Create an unverified account and send a verification code.

        Registering again with an unverified email only re-sends the code.

        Raises:
            ValidationError: If the email or password is unacceptable.
            AccountExistsError: If a verified account owns the email.
        """
        email = normalize_email(email)
        check_new_password(password)

        user = await self.users.get_by_email(email)
        if user is not None and user.verified_at is not None:
            raise AccountExistsError(email)

        if user is None:
            try:
                user = await self.users.add(
                    email=email,
                    password_hash=hash_password(password),
                    full_name=(full_name or "").strip()[:160],
                    role=Role.USER,
                )
            except IntegrityError:
                await self.session.rollback()
                raise AccountExistsError(email) from None
            logger.info("Account registered", user_id=user.id)

        principal = principal_from_model(user)
        await self._issue_code(principal)
        await self.session.commit()
        return principal

    async def send_verification_code(self, email: str) -> bool:
        """Issue a fresh code for an unverified account.

        Returns:
            False if the account is already verified.

        Raises:
            PrincipalNotFoundError: If no account owns the email.
        """
        email = normalize_email(email)
        user = await self.users.get_by_email(email)
        if user is None:
            raise PrincipalNotFoundError(email)
        if user.verified_at is not None:
            return False

        await self._issue_code(principal_from_model(user))
        await self.session.commit()
        return True

    async def _issue_code(self, principal: Principal) -> None:
        code = new_verification_code()
        await self.users.replace_code(principal.id, code, self.clock())
        await self.outbox.add(
            VerificationCodeIssued(
                aggregate_id=str(principal.id),
                aggregate_type="Principal",
                email=principal.email,
                code=code,
            )
        )
        logger.info("Verification code issued", user_id=principal.id)

    # ========================================================================
    # Authentication
    # ========================================================================

    async def verify_email(
        self,
        email: str,
        code: str,
        fingerprint: Fingerprint,
        geo: GeoLabel | None = None,
    ) -> AuthResult:
        """Verify an email with its code and open a session.

        Args:
            email: Account email.
            code: Six-digit code from the email.
            fingerprint: Device fingerprint of the request.
            geo: Location labels from edge headers, if any.

        Returns:
            The verified principal and its new session.

        Raises:
            PrincipalNotFoundError: If no account owns the email.
            AccountDisabledError: If the account was deleted.
            InvalidVerificationCodeError: If the code is wrong or expired.
        """
        email = normalize_email(email)
        code = (code or "").strip()
        if not CODE_PATTERN.match(code):
            raise InvalidVerificationCodeError("Code must be 6 digits")

        user = await self.users.get_by_email(email)
        if user is None:
            raise PrincipalNotFoundError(email)
        if user.deleted_at is not None:
            raise AccountDisabledError()

        stored = await self.users.get_code(user.id)
        if stored is None or not secrets.compare_digest(stored.code, code):
            raise InvalidVerificationCodeError("Invalid verification code")
        if self._is_expired(stored.created_at):
            raise InvalidVerificationCodeError("Verification code expired")

        if user.verified_at is None:
            await self.users.mark_verified(user.id, self.clock())
        await self.users.delete_code(user.id)
        await self._elevate_if_admin(user)
        await self.session.commit()

        logger.info("Email verified", user_id=user.id)
        return await self._open_session(user.id, fingerprint, geo)

    async def login(
        self,
        email: str,
        password: str,
        fingerprint: Fingerprint,
        geo: GeoLabel | None = None,
    ) -> AuthResult:
        """Check credentials and open a session.

        Raises:
            InvalidCredentialsError: If the email or password is wrong.
            AccountDisabledError: If the account was deleted.
            EmailNotVerifiedError: If the email was never verified.
        """
        try:
            email = normalize_email(email)
        except ValidationError:
            raise InvalidCredentialsError() from None

        user = await self.users.get_by_email(email)
        if user is None or not verify_password(password, user.password_hash):
            logger.info("Login failed")
            raise InvalidCredentialsError()
        if user.deleted_at is not None:
            raise AccountDisabledError()
        if user.verified_at is None:
            raise EmailNotVerifiedError(email)

        await self._elevate_if_admin(user)
        await self.session.commit()

        logger.info("Login succeeded", user_id=user.id)
        return await self._open_session(user.id, fingerprint, geo)

    async def _elevate_if_admin(self, user: UserModel) -> None:
        if user.email in settings.admin_email_set and user.role != Role.ADMIN.value:
            await self.users.set_role(user.id, Role.ADMIN)
            logger.info("Account elevated to admin", user_id=user.id)

    async def _open_session(
        self,
        user_id: int,
        fingerprint: Fingerprint,
        geo: GeoLabel | None,
    ) -> AuthResult:
        device_session = await self.registry.create_session(user_id, fingerprint, geo)
        user = await self.users.get(user_id)
        await self.session.refresh(user)
        return AuthResult(principal=principal_from_model(user), device_session=device_session)

    # ========================================================================
    # Password management
    # ========================================================================

    async def change_password(self, principal_id: int, current_password: str, new_password: str) -> None:
        """Replace the password after checking the current one.

        Raises:
            ValidationError: If the new password is too short.
            AuthenticationRequiredError: If the account is gone.
            IncorrectPasswordError: If the current password does not match.
        """
        check_new_password(new_password)
        user = await self.users.get(principal_id)
        if user is None:
            raise AuthenticationRequiredError()
        if not current_password or not verify_password(current_password, user.password_hash):
            raise IncorrectPasswordError()

        await self.users.set_password_hash(user.id, hash_password(new_password))
        await self.session.commit()
        logger.info("Password changed", user_id=user.id)

    async def request_password_reset(self, principal_id: int) -> None:
        """Email a password reset code to the account, replacing any previous one.

        Raises:
            AuthenticationRequiredError: If the account is gone.
        """
        user = await self.users.get(principal_id)
        if user is None:
            raise AuthenticationRequiredError()

        code = new_verification_code()
        await self.users.replace_reset_code(user.id, code, self.clock())
        await self.outbox.add(
            PasswordResetCodeIssued(
                aggregate_id=str(user.id),
                aggregate_type="Principal",
                email=user.email,
                code=code,
            )
        )
        await self.session.commit()
        logger.info("Password reset code issued", user_id=user.id)

    async def validate_password_reset(self, principal_id: int, code: str) -> None:
        """Check a password reset code without using it up.

        Raises:
            InvalidVerificationCodeError: If the code is malformed, wrong or expired.
        """
        stored = await self._matching_reset_code(principal_id, code)
        if self._is_expired(stored.created_at):
            raise InvalidVerificationCodeError("Password reset code expired")

    async def reset_password(self, principal_id: int, code: str, new_password: str) -> None:
        """Set a new password with a reset code, using the code up.

        An expired code is deleted as well.

        Raises:
            InvalidVerificationCodeError: If the code is malformed, wrong or expired.
            ValidationError: If the new password is too short.
        """
        stored = await self._matching_reset_code(principal_id, code)
        check_new_password(new_password)
        if self._is_expired(stored.created_at):
            await self.users.delete_reset_code(principal_id)
            await self.session.commit()
            raise InvalidVerificationCodeError("Password reset code expired")

        await self.users.set_password_hash(principal_id, hash_password(new_password))
        await self.users.delete_reset_code(principal_id)
        await self.session.commit()
        logger.info("Password reset", user_id=principal_id)

    async def _matching_reset_code(self, principal_id: int, code: str) -> PasswordResetCodeModel:
        code = (code or "").strip()
        if not CODE_PATTERN.match(code):
            raise InvalidVerificationCodeError("Code must be 6 digits")
        stored = await self.users.get_reset_code(principal_id)
        if stored is None or not secrets.compare_digest(stored.code, code):
            raise InvalidVerificationCodeError("Invalid password reset code")
        return stored

    def _is_expired(self, issued_at: datetime) -> bool:
        return self.clock() - issued_at > timedelta(minutes=settings.verification_code_ttl_minutes)
