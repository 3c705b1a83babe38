"""Resolve who is calling: an authenticated user, the Telegram bot, or nobody.

Every admin-gated route goes through ``require_admin`` so the role check lives
in one place. Role comes from ``user.role``; anything other than exactly
``"admin"`` is treated as a regular user.
"""
import hmac
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from sqlmodel import Session

from bookpay.config import Settings, get_settings
from bookpay.database import get_session
from bookpay.errors import ConfigurationError
from bookpay.models.user import User
from bookpay.utils.token import bearer_token, decode_access_token

logger = logging.getLogger(__name__)


class PrincipalKind(str, Enum):
    anonymous = "anonymous"
    user = "user"
    bot = "bot"


class Role(str, Enum):
    user = "user"
    admin = "admin"


@dataclass(frozen=True)
class Principal:
    kind: PrincipalKind
    user_id: Optional[int] = None
    role: Optional[Role] = None

    @property
    def is_admin(self) -> bool:
        return self.kind == PrincipalKind.user and self.role == Role.admin

    @property
    def actor(self) -> str:
        if self.kind == PrincipalKind.user:
            return f"{self.role.value}:{self.user_id}"
        return self.kind.value


ANONYMOUS = Principal(kind=PrincipalKind.anonymous)
BOT = Principal(kind=PrincipalKind.bot)


def is_bot_secret(token: str, settings: Settings) -> bool:
    secret = settings.telegram_bot_secret
    if not secret:
        return False
    return hmac.compare_digest(token.encode("utf-8"), secret.encode("utf-8"))


def resolve_principal(authorization: Optional[str], session: Session, settings: Settings) -> Principal:
    token = bearer_token(authorization)
    if token is None:
        return ANONYMOUS

    if is_bot_secret(token, settings):
        return BOT

    payload = decode_access_token(token, settings)
    if payload is None:
        return ANONYMOUS

    user_id = payload.get("user_id") or payload.get("sub")
    try:
        user = session.get(User, int(user_id)) if user_id is not None else None
    except (TypeError, ValueError):
        user = None

    if user is None or not user.can_login:
        return ANONYMOUS

    role = Role.admin if user.role == Role.admin.value else Role.user
    return Principal(kind=PrincipalKind.user, user_id=user.id, role=role)


def get_principal(
    authorization: Optional[str] = Header(default=None),
    session: Session = Depends(get_session),
    settings: Settings = Depends(get_settings),
) -> Principal:
    return resolve_principal(authorization, session, settings)


def require_user(principal: Principal = Depends(get_principal)) -> Principal:
    if principal.kind != PrincipalKind.user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return principal


def require_admin(principal: Principal = Depends(require_user)) -> Principal:
    if not principal.is_admin:
        raise HTTPException(403, "Admin access required")
    return principal


def require_bot(
    principal: Principal = Depends(get_principal),
    settings: Settings = Depends(get_settings),
) -> Principal:
    if not settings.telegram_bot_secret:
        logger.error("telegram_bot_secret is not configured; rejecting bot call")
        raise ConfigurationError("Bot access is not configured")

    if principal.kind != PrincipalKind.bot:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return principal
