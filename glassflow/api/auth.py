"""Auth API: login, logout, current user."""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from glassflow.db import crud
from glassflow.db.engine import get_db
from glassflow.dependencies import require_auth
from glassflow.services.auth import (
    AuthContext, verify_password, SESSION_COOKIE_NAME, SESSION_MAX_AGE_DAYS,
    create_session, remove_session, session_token,
)
from glassflow.services.rate_limit import client_ip

router = APIRouter(prefix="/api/auth", tags=["auth"])


class LoginRequest(BaseModel):
    email: str
    password: str


@router.post("/login")
async def login(
    body: LoginRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    user = await crud.get_user_by_email(db, body.email.strip().lower())
    if not user or not user.is_active or not verify_password(body.password, user.password_hash):
        return JSONResponse(status_code=401, content={"detail": "Invalid credentials"})

    token = await create_session(user, db, ip_address=client_ip(request))
    user.last_login_at = datetime.now(timezone.utc)
    await db.commit()

    response = JSONResponse(content={
        "ok": True, "user_id": user.id, "role": user.role, "token": token,
    })
    response.set_cookie(
        SESSION_COOKIE_NAME, token,
        httponly=True, samesite="lax",
        max_age=86400 * SESSION_MAX_AGE_DAYS,
    )
    return response


@router.post("/logout")
async def logout(request: Request, db: AsyncSession = Depends(get_db)):
    token = session_token(request)
    if token:
        await remove_session(token, db)
    response = JSONResponse(content={"ok": True})
    response.delete_cookie(SESSION_COOKIE_NAME)
    return response


@router.get("/me")
async def me(auth: AuthContext = Depends(require_auth)):
    return {
        "user_id": auth.user_id,
        "email": auth.email,
        "display_name": auth.display_name,
        "role": auth.role,
        "shop_id": auth.shop_id,
        "insurer_name": auth.insurer_name,
    }
