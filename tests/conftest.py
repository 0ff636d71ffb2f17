"""Shared fixtures: a per-test SQLite database, seeding helpers and HTTP clients."""

from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator, Iterator

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import Session
from sqlalchemy.pool import NullPool

from app.infrastructure import models  # noqa: F401  (registers tables)
from app.infrastructure.config import settings
from app.infrastructure.database import Base, build_engine, build_session_factory, get_session
from app.infrastructure.models import PromoCodeModel, UserModel
from app.infrastructure.security import hash_password
from app.main import app

DEFAULT_PASSWORD = "correct-horse-battery"


class FrozenClock:
    """Controllable clock injected into services."""

    def __init__(self, now: datetime | None = None) -> None:
        self.now = now or datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def database_url(tmp_path) -> str:
    """File-backed SQLite database with the full schema."""
    path = tmp_path / "storefront.db"
    sync_engine = create_engine(f"sqlite:///{path}")
    Base.metadata.create_all(sync_engine)
    sync_engine.dispose()
    return f"sqlite+aiosqlite:///{path}"


@pytest.fixture
def session_factory(database_url: str) -> async_sessionmaker[AsyncSession]:
    return build_session_factory(build_engine(database_url, poolclass=NullPool, echo=False))


@pytest_asyncio.fixture
async def session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


# ============================================================================
# Seeding helpers
# ============================================================================


async def create_user(
    session: AsyncSession,
    email: str = "shopper@example.com",
    password: str = DEFAULT_PASSWORD,
    verified: bool = True,
    full_name: str = "Test Shopper",
) -> UserModel:
    """Insert an account directly, bypassing registration."""
    user = UserModel(
        email=email,
        password_hash=hash_password(password),
        full_name=full_name,
        role="USER",
        verified_at=datetime.now(timezone.utc) if verified else None,
    )
    session.add(user)
    await session.commit()
    return user


async def create_promo(
    session: AsyncSession,
    code: str = "SPRING10",
    discount_type: str = "PERCENT",
    discount_value: int = 10,
    **kwargs,
) -> PromoCodeModel:
    """Insert a promo code."""
    promo = PromoCodeModel(
        code=code,
        discount_type=discount_type,
        discount_value=discount_value,
        **kwargs,
    )
    session.add(promo)
    await session.commit()
    return promo


@pytest.fixture
def make_user():
    return create_user


@pytest.fixture
def make_promo():
    return create_promo


# ============================================================================
# HTTP clients
# ============================================================================


@pytest.fixture
def client(session_factory, monkeypatch) -> Iterator[TestClient]:
    """Test client bound to the per-test database, without background delivery."""

    async def override_get_session() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_session] = override_get_session
    monkeypatch.setattr(settings, "outbox_drain_inline", False)
    yield TestClient(app)
    app.dependency_overrides.pop(get_session, None)


@pytest.fixture
def other_client(client) -> TestClient:
    """A second browser with its own cookie jar."""
    return TestClient(app)


@pytest.fixture
def db(database_url: str) -> Iterator[Session]:
    """Synchronous session on the same database, for seeding and assertions."""
    engine = create_engine(database_url.replace("sqlite+aiosqlite", "sqlite"))
    with Session(engine, expire_on_commit=False) as session:
        yield session
    engine.dispose()


@pytest.fixture
def seed_user(db: Session):
    def _seed(
        email: str = "shopper@example.com",
        password: str = DEFAULT_PASSWORD,
        verified: bool = True,
    ) -> UserModel:
        user = UserModel(
            email=email,
            password_hash=hash_password(password),
            full_name="Test Shopper",
            role="USER",
            verified_at=datetime.now(timezone.utc) if verified else None,
        )
        db.add(user)
        db.commit()
        return user

    return _seed


@pytest.fixture
def seed_promo(db: Session):
    def _seed(code: str = "SPRING10", discount_type: str = "PERCENT", discount_value: int = 10, **kwargs) -> PromoCodeModel:
        promo = PromoCodeModel(code=code, discount_type=discount_type, discount_value=discount_value, **kwargs)
        db.add(promo)
        db.commit()
        return promo

    return _seed


@pytest.fixture
def login():
    """Log a client in with a password."""

    def _login(client: TestClient, email: str = "shopper@example.com", password: str = DEFAULT_PASSWORD, **kwargs):
        response = client.post("/auth/login", json={"email": email, "password": password}, **kwargs)
        assert response.status_code == 200, response.text
        return response

    return _login


@pytest.fixture
def internal_headers() -> dict[str, str]:
    """Headers accepted by the internal endpoints."""
    return {"Authorization": f"Bearer {settings.internal_api_key}"}
