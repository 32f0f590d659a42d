"""Dashboard authentication for insurer and shop staff.

Passwords are bcrypt hashes. Sessions live in the database keyed by the
SHA-256 of the token. The browser dashboard sends the token as a
cookie; API clients send it as a bearer header.
"""

from __future__ import annotations

import hashlib
import secrets
from dataclasses import dataclass
from datetime import datetime, timezone, timedelta

import bcrypt
from fastapi import Request, HTTPException
from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession

from glassflow.models.auth_models import User, UserSession

SESSION_COOKIE_NAME = "session_token"
SESSION_MAX_AGE_DAYS = 7


@dataclass
class AuthContext:
    user_id: str
    role: str  # 'insurer' | 'shop' | 'admin'
    email: str
    display_name: str
    shop_id: str | None = None
    insurer_name: str = ""

    @classmethod
    def from_user(cls, user: User) -> "AuthContext":
        return cls(
            user_id=user.id,
            role=user.role,
            email=user.email,
            display_name=user.display_name,
            shop_id=user.shop_id,
            insurer_name=user.insurer_name,
        )


def hash_password(plain: str) -> str:
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))


def _hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


async def create_session(user: User, db: AsyncSession, ip_address: str = "") -> str:
    """Store a new session for ``user`` and return the raw token."""
    token = secrets.token_urlsafe(48)
    db.add(UserSession(
        user_id=user.id,
        token_hash=_hash_token(token),
        expires_at=datetime.now(timezone.utc) + timedelta(days=SESSION_MAX_AGE_DAYS),
        ip_address=ip_address,
    ))
    await db.commit()
    return token


async def validate_session(token: str, db: AsyncSession) -> User | None:
    """Active user behind an unexpired session token, or None."""
    stmt = (
        select(User)
        .join(UserSession, UserSession.user_id == User.id)
        .where(
            UserSession.token_hash == _hash_token(token),
            UserSession.expires_at > datetime.now(timezone.utc),
            User.is_active.is_(True),
        )
    )
    return (await db.execute(stmt)).scalars().first()


async def remove_session(token: str, db: AsyncSession) -> None:
    await db.execute(delete(UserSession).where(UserSession.token_hash == _hash_token(token)))
    await db.commit()


def session_token(request: Request) -> str | None:
    token = request.cookies.get(SESSION_COOKIE_NAME)
    if token:
        return token
    header = request.headers.get("authorization", "")
    scheme, _, value = header.partition(" ")
    if scheme.lower() == "bearer" and value.strip():
        return value.strip()
    return None


async def get_current_user(request: Request, db: AsyncSession) -> AuthContext:
    """Resolve the caller's dashboard session or raise 401."""
    token = session_token(request)
    if not token:
        raise HTTPException(status_code=401, detail="Not authenticated")

    user = await validate_session(token, db)
    if not user:
        raise HTTPException(status_code=401, detail="Session expired")
    return AuthContext.from_user(user)
