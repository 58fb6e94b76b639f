from __future__ import annotations

import secrets

import bcrypt

BCRYPT_ROUNDS = 10
# bcrypt only reads the first 72 bytes; newer releases raise instead of truncating.
BCRYPT_MAX_BYTES = 72
SESSION_TOKEN_BYTES = 16


def hash_password(plain: str) -> str:
    salt = bcrypt.gensalt(rounds=BCRYPT_ROUNDS)
    return bcrypt.hashpw(plain.encode("utf-8")[:BCRYPT_MAX_BYTES], salt).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    if not hashed:
        return False
    try:
        return bcrypt.checkpw(plain.encode("utf-8")[:BCRYPT_MAX_BYTES], hashed.encode("utf-8"))
    except ValueError:
        # Malformed hash in storage.
        return False


def new_session_token() -> str:
    """Return an opaque, URL-safe session token."""
    return secrets.token_urlsafe(SESSION_TOKEN_BYTES)
