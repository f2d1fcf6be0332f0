"""
Password hashing and opaque tokens.
"""

import hashlib
import secrets

import bcrypt


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, password_hash: str | None) -> bool:
    if not password_hash:
        return False
    return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))


def generate_token(nbytes: int = 32) -> str:
    """Random hex token (64 chars for the default 32 bytes)."""
    return secrets.token_hex(nbytes)


def hash_token(token: str) -> str:
    """SHA-256 of a token, for tokens that must not be stored in clear."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()
