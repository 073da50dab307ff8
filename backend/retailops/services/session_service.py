# Overview: Bearer token issue/validate/revoke for the HTTP layer.

"""
API Session Tokens

- Tokens are 32 random bytes (64 hex chars), shown once when issued
- Only the SHA-256 hash is stored
- Tokens expire after SESSION_TOKEN_TTL_HOURS and can be revoked
"""

import hashlib
import secrets
from datetime import timedelta

from flask import current_app

from ..extensions import db
from ..models import SessionToken, User
from ..time_utils import utcnow


def generate_token() -> str:
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def issue_session(user: User, ttl_hours: int | None = None) -> str:
    """Create a session for ``user`` and return the plaintext token."""
    if ttl_hours is None:
        ttl_hours = current_app.config.get("SESSION_TOKEN_TTL_HOURS", 24)

    token = generate_token()
    session = SessionToken(
        user_id=user.id,
        token_hash=hash_token(token),
        expires_at=utcnow() + timedelta(hours=ttl_hours),
    )
    db.session.add(session)
    db.session.commit()
    return token


def validate_session(token: str) -> User | None:
    """Return the active user owning ``token``, or None if invalid/expired/revoked."""
    if not token:
        return None

    session = db.session.query(SessionToken).filter_by(token_hash=hash_token(token)).first()
    if session is None or session.is_revoked:
        return None
    if session.expires_at <= utcnow():
        return None

    user = session.user
    if user is None or not user.is_active:
        return None
    return user


def revoke_session(token: str) -> bool:
    session = db.session.query(SessionToken).filter_by(token_hash=hash_token(token)).first()
    if session is None or session.is_revoked:
        return False
    session.is_revoked = True
    session.revoked_at = utcnow()
    db.session.commit()
    return True
