"""Caller identity and job-trigger authentication.

Sessions and logins are owned by the identity provider in front of this service;
it forwards the authenticated account id in ``X-User-Id``.
"""
from __future__ import annotations

import hmac
import logging

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from marketplace_escrow.config import get_settings
from marketplace_escrow.db import get_db
from marketplace_escrow.models.user import User
from marketplace_escrow.utils.errors import error_response

logger = logging.getLogger(__name__)

OPEN_CRON_ENVS = {"dev", "local", "test"}


def _load_active_user(db: Session, user_id: int) -> User:
    user = db.get(User, user_id)
    if user is None or not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=error_response("UNKNOWN_USER", "Authenticated user not found or inactive."),
        )
    return user


def require_user(
    db: Session = Depends(get_db),
    x_user_id: int | None = Header(default=None, alias="X-User-Id"),
) -> User:
    """Return the signed-in account."""

    if x_user_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=error_response("UNAUTHENTICATED", "Sign in to continue."),
        )
    return _load_active_user(db, x_user_id)


def optional_user(
    db: Session = Depends(get_db),
    x_user_id: int | None = Header(default=None, alias="X-User-Id"),
) -> User | None:
    """Return the signed-in account, or ``None`` for guest checkout."""

    if x_user_id is None:
        return None
    return _load_active_user(db, x_user_id)


def require_staff(user: User = Depends(require_user)) -> User:
    if not user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=error_response("INSUFFICIENT_ROLE", "Staff access required."),
        )
    return user


def require_internal_token(authorization: str | None = Header(default=None)) -> None:
    """Guard job triggers and checkout callbacks with ``Authorization: Bearer <CRON_SECRET>``."""

    settings = get_settings()
    secret = settings.CRON_SECRET
    if secret is None:
        if settings.app_env.lower() in OPEN_CRON_ENVS:
            logger.warning("CRON_SECRET is not configured; internal endpoints are open in this environment.")
            return
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=error_response("CRON_NOT_CONFIGURED", "Internal triggers are not configured."),
        )

    token = None
    if authorization and authorization.startswith("Bearer "):
        token = authorization.split(" ", 1)[1].strip()
    if not token or not hmac.compare_digest(token.encode("utf-8"), secret.encode("utf-8")):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=error_response("UNAUTHORIZED", "Invalid internal trigger credentials."),
        )


__all__ = ["require_user", "optional_user", "require_staff", "require_internal_token"]
