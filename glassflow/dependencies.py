"""FastAPI dependency providers for auth, role enforcement, rate limits and the workflow engine."""

from __future__ import annotations

import hmac
from functools import lru_cache

from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from glassflow.config import Settings, get_settings
from glassflow.db.engine import get_db
from glassflow.services.auth import AuthContext, get_current_user
from glassflow.services.notifications import NotificationDispatcher, dispatcher
from glassflow.services.rate_limit import client_ip, lookup_limiter, mutation_limiter
from glassflow.services.workflow import Actor, WorkflowEngine


@lru_cache
def get_settings_dep() -> Settings:
    return get_settings()


async def require_auth(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> AuthContext:
    """Require a valid authenticated session. Returns AuthContext."""
    return await get_current_user(request, db)


def require_role(*allowed_roles: str):
    """Factory: returns a dependency that enforces role membership."""
    async def _check(auth: AuthContext = Depends(require_auth)) -> AuthContext:
        if auth.role not in allowed_roles and auth.role != "admin":
            raise HTTPException(403, "Insufficient permissions")
        return auth
    return _check


require_insurer = require_role("insurer")
require_shop = require_role("shop")


def actor_for(auth: AuthContext) -> Actor:
    if auth.role == "shop":
        if not auth.shop_id:
            raise HTTPException(403, "Account is not linked to a shop")
        return Actor("shop", auth.shop_id)
    return Actor("insurer", auth.user_id)


def get_dispatcher() -> NotificationDispatcher:
    return dispatcher


async def get_engine(
    db: AsyncSession = Depends(get_db),
    notifier: NotificationDispatcher = Depends(get_dispatcher),
    settings: Settings = Depends(get_settings_dep),
) -> WorkflowEngine:
    return WorkflowEngine(db, notifier, settings.workflow)


# ── Rate limits ──────────────────────────────────────────

async def limit_mutations(request: Request) -> None:
    mutation_limiter.check(client_ip(request))


async def limit_lookups(request: Request) -> None:
    lookup_limiter.check(client_ip(request))


# ── Service role ─────────────────────────────────────────

async def require_service_role(
    x_service_role_key: str = Header(default=""),
    settings: Settings = Depends(get_settings_dep),
) -> None:
    expected = settings.service_role_key
    if not expected or not hmac.compare_digest(x_service_role_key, expected):
        raise HTTPException(401, "Invalid service role key")
