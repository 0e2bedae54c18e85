"""Password hashing and one-time token helpers."""

import secrets

import bcrypt

from src.core.config import settings


def hash_password(password: str) -> str:
    """Hash a password with bcrypt using the configured work factor."""
    salt = bcrypt.gensalt(rounds=settings.bcrypt_rounds)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """Check a password against a stored bcrypt hash."""
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Malformed stored hash
        return False


def generate_token(nbytes: int = 32) -> str:
    """Return a random hex token (64 characters for the default 32 bytes)."""
    return secrets.token_hex(nbytes)
