"""Password hashing and bearer token helpers."""

import secrets
from uuid import uuid4

import bcrypt


def hash_password(password: str) -> str:
    """Hash a password with bcrypt.

    Args:
        password: Plain text password.

    Returns:
        bcrypt hash as text.
    """
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """Compare a password against a stored bcrypt hash.

    Args:
        password: Plain text password.
        password_hash: Stored hash.

    Returns:
        True if the password matches.
    """
    if not password or not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Malformed hash in storage
        return False


def new_session_token() -> str:
    """Opaque session bearer: 32 random bytes, hex encoded."""
    return secrets.token_hex(32)


def new_bearer_token() -> str:
    """Opaque cart or order bearer token."""
    return str(uuid4())


def new_verification_code() -> str:
    """Six-digit email verification code."""
    return f"{secrets.randbelow(900000) + 100000}"
