"""Account, verification code and password reset code repository."""

from datetime import datetime

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.domain.entities import Principal, Role
from app.infrastructure.models import PasswordResetCodeModel, UserModel, VerificationCodeModel


def principal_from_model(row: UserModel) -> Principal:
    """Build a Principal record from a users row."""
    return Principal(
        id=row.id,
        email=row.email,
        role=Role(row.role),
        full_name=row.full_name,
        verified_at=row.verified_at,
        deleted_at=row.deleted_at,
    )


class UserRepository:
    """Repository for account rows and their verification codes.

    Example usage:
        repo = UserRepository(session)
        user = await repo.get_by_email("shopper@example.com")
    """

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with database session.

        Args:
            session: Async SQLAlchemy session.
        """
        self.session = session

    async def get(self, user_id: int) -> UserModel | None:
        """Get an account by id."""
        return await self.session.get(UserModel, user_id)

    async def get_by_email(self, email: str) -> UserModel | None:
        """Get an account by its normalised email.

        Args:
            email: Lowercased email.

        Returns:
            Account row if found, None otherwise.
        """
        result = await self.session.execute(
            select(UserModel).where(UserModel.email == email)
        )
        return result.scalar_one_or_none()

    async def add(self, email: str, password_hash: str, full_name: str, role: Role) -> UserModel:
        """Insert an unverified account.

        Raises:
            IntegrityError: If the email is already taken.
        """
        user = UserModel(
            email=email,
            password_hash=password_hash,
            full_name=full_name,
            role=role.value,
        )
        self.session.add(user)
        await self.session.flush()
        return user

    async def set_role(self, user_id: int, role: Role) -> None:
        await self.session.execute(
            update(UserModel).where(UserModel.id == user_id).values(role=role.value)
        )

    async def mark_verified(self, user_id: int, verified_at: datetime) -> None:
        await self.session.execute(
            update(UserModel)
            .where(UserModel.id == user_id)
            .values(verified_at=verified_at)
        )

    async def set_password_hash(self, user_id: int, password_hash: str) -> None:
        await self.session.execute(
            update(UserModel)
            .where(UserModel.id == user_id)
            .values(password_hash=password_hash)
        )

    # ------------------------------------------------------------------
    # Verification codes
    # ------------------------------------------------------------------

    async def get_code(self, user_id: int) -> VerificationCodeModel | None:
        result = await self.session.execute(
            select(VerificationCodeModel).where(VerificationCodeModel.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def replace_code(self, user_id: int, code: str, issued_at: datetime) -> None:
        """Store a fresh code for the account, dropping any previous one."""
        await self.delete_code(user_id)
        self.session.add(VerificationCodeModel(user_id=user_id, code=code, created_at=issued_at))
        await self.session.flush()

    async def delete_code(self, user_id: int) -> None:
        await self.session.execute(
            delete(VerificationCodeModel).where(VerificationCodeModel.user_id == user_id)
        )

    # ------------------------------------------------------------------
    # Password reset codes
    # ------------------------------------------------------------------

    async def get_reset_code(self, user_id: int) -> PasswordResetCodeModel | None:
        result = await self.session.execute(
            select(PasswordResetCodeModel).where(PasswordResetCodeModel.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def replace_reset_code(self, user_id: int, code: str, issued_at: datetime) -> None:
        """Store a fresh reset code for the account, dropping any previous one."""
        await self.delete_reset_code(user_id)
        self.session.add(PasswordResetCodeModel(user_id=user_id, code=code, created_at=issued_at))
        await self.session.flush()

    async def delete_reset_code(self, user_id: int) -> None:
        await self.session.execute(
            delete(PasswordResetCodeModel).where(PasswordResetCodeModel.user_id == user_id)
        )
