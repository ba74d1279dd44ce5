from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.core.errors import ConflictError
from app.core.permissions import PermissionCode
from app.db.session import get_db
from app.models.user import User
from app.schemas.common import MessageResponse
from app.schemas.users import ChangePasswordRequest, NotificationOut, ProfileUpdate, SecurityUpdate, UserOut
from app.services import authz, notifications, users

router = APIRouter(prefix="/users", tags=["users"])


@router.get("/{user_id}", response_model=UserOut)
async def get_user(
    user_id: int,
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(get_db),
) -> UserOut:
    authz.ensure_self_or_permission(current_user, user_id, PermissionCode.USER_VIEW_ALL)
    return await users.get_user(db, user_id)


@router.patch("/{user_id}/profile", response_model=UserOut)
async def update_profile(
    user_id: int,
    payload: ProfileUpdate,
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(get_db),
) -> UserOut:
    authz.ensure_self_or_permission(current_user, user_id, PermissionCode.USER_MANAGE)
    user = await users.update_profile(db, user_id, payload, actor_id=current_user.id)
    try:
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        raise ConflictError("Email already in use") from exc
    return user


@router.patch("/{user_id}/security", response_model=UserOut)
async def update_security(
    user_id: int,
    payload: SecurityUpdate,
    current_user: User = Depends(deps.require_permission(PermissionCode.USER_MANAGE)),
    db: AsyncSession = Depends(get_db),
) -> UserOut:
    user = await users.update_security(db, user_id, payload, actor_id=current_user.id)
    await db.commit()
    return user


@router.get("/{user_id}/notifications", response_model=list[NotificationOut])
async def list_notifications(
    user_id: int,
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(get_db),
) -> list[NotificationOut]:
    authz.ensure_self_or_permission(current_user, user_id, PermissionCode.USER_VIEW_ALL)
    return await notifications.list_notifications(db, user_id)


@router.post("/{user_id}/password", response_model=MessageResponse)
async def change_password(
    user_id: int,
    payload: ChangePasswordRequest,
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(get_db),
) -> MessageResponse:
    authz.ensure_self_or_permission(current_user, user_id, PermissionCode.USER_MANAGE)
    await users.change_password(db, user_id, payload, actor_id=current_user.id)
    await db.commit()
    return MessageResponse(message="Password updated successfully")


@router.delete("/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def deactivate_user(
    user_id: int,
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(get_db),
) -> Response:
    authz.ensure_self_or_permission(current_user, user_id, PermissionCode.USER_MANAGE)
    await users.set_active(db, user_id, False, actor_id=current_user.id)
    await db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)
