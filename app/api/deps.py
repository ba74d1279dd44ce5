from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer
from redis.asyncio import Redis
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.core.context import set_user_id
from app.core.errors import UnauthorizedError
from app.core.permissions import PermissionCode
from app.core.security import ACCESS_TOKEN_TYPE, decode_token
from app.db.session import get_db
from app.models import User
from app.services import authz
from app.services.notifications import NotificationService

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/login", auto_error=False)


async def get_db_session(db: AsyncSession = Depends(get_db)) -> AsyncSession:
    return db


def get_redis(request: Request) -> Redis:
    return request.app.state.redis


def get_notifier(request: Request) -> NotificationService:
    return request.app.state.notifier


async def get_current_user(
    token: str | None = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db_session),
) -> User:
    if not token:
        raise UnauthorizedError("Not authenticated")
    try:
        payload = decode_token(token, expected_type=ACCESS_TOKEN_TYPE)
        user_id = int(payload.get("sub"))
    except (ValueError, TypeError) as exc:
        raise UnauthorizedError("Invalid token") from exc
    token_version = payload.get("tv")

    stmt = select(User).options(selectinload(User.role)).where(User.id == user_id)
    user = (await db.execute(stmt)).scalar_one_or_none()
    if not user:
        raise UnauthorizedError("User not found")
    if not user.is_active:
        raise UnauthorizedError("Inactive user")
    if token_version is not None and user.token_version != token_version:
        raise UnauthorizedError("Token revoked")

    set_user_id(str(user.id))
    return user


def require_permission(permission_code: PermissionCode | str):
    async def dependency(current_user: User = Depends(get_current_user)) -> User:
        authz.ensure_permission(current_user, permission_code)
        return current_user

    return dependency
