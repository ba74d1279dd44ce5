from __future__ import annotations

import logging

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import ConflictError, NotFoundError, ValidationError
from app.core.security import get_password_hash, verify_password
from app.models.user import User
from app.schemas.users import ChangePasswordRequest, ProfileUpdate, SecurityUpdate
from app.services.audit import model_snapshot, record_audit_log

logger = logging.getLogger(__name__)

_SNAPSHOT_EXCLUDE = {"hashed_password"}


async def get_user(db: AsyncSession, user_id: int) -> User:
    user = (await db.execute(select(User).where(User.id == user_id))).scalar_one_or_none()
    if user is None:
        raise NotFoundError("User not found")
    return user


async def list_users(db: AsyncSession, *, page: int, limit: int) -> tuple[list[User], int]:
    total = (await db.execute(select(func.count(User.id)))).scalar_one()
    stmt = select(User).order_by(User.id.asc()).offset((page - 1) * limit).limit(limit)
    return list((await db.execute(stmt)).scalars().all()), int(total)


async def update_profile(db: AsyncSession, user_id: int, payload: ProfileUpdate, *, actor_id=None) -> User:
    user = await get_user(db, user_id)
    before = model_snapshot(user, exclude=_SNAPSHOT_EXCLUDE)
    changes = payload.model_dump(exclude_unset=True, exclude_none=True)
    if "email" in changes:
        new_email = changes["email"].lower()
        if new_email != user.email:
            clash = await db.execute(
                select(User.id).where(func.lower(User.email) == new_email, User.id != user.id)
            )
            if clash.scalar_one_or_none() is not None:
                raise ConflictError("Email already in use")
            # A new address has to be verified again.
            user.email_verified = False
        changes["email"] = new_email
    for field, value in changes.items():
        setattr(user, field, value)
    db.add(user)
    record_audit_log(
        db,
        actor_id=actor_id,
        action="user.profile_updated",
        resource_type="user",
        resource_id=str(user.id),
        old_value=before,
        new_value=model_snapshot(user, exclude=_SNAPSHOT_EXCLUDE),
    )
    return user


async def update_security(db: AsyncSession, user_id: int, payload: SecurityUpdate, *, actor_id=None) -> User:
    user = await get_user(db, user_id)
    before = {"email_verified": user.email_verified, "phone_verified": user.phone_verified}
    for field, value in payload.model_dump(exclude_unset=True, exclude_none=True).items():
        setattr(user, field, value)
    db.add(user)
    record_audit_log(
        db,
        actor_id=actor_id,
        action="user.security_updated",
        resource_type="user",
        resource_id=str(user.id),
        old_value=before,
        new_value={"email_verified": user.email_verified, "phone_verified": user.phone_verified},
    )
    return user


async def change_password(db: AsyncSession, user_id: int, payload: ChangePasswordRequest, *, actor_id=None) -> User:
    user = await get_user(db, user_id)
    if not verify_password(payload.current_password, user.hashed_password):
        raise ValidationError.single("currentPassword", "Current password is incorrect")
    if payload.current_password == payload.new_password:
        raise ValidationError.single("newPassword", "New password must differ from the current password")
    user.hashed_password = get_password_hash(payload.new_password)
    user.token_version = (user.token_version or 0) + 1
    db.add(user)
    record_audit_log(
        db,
        actor_id=actor_id,
        action="user.password_changed",
        resource_type="user",
        resource_id=str(user.id),
    )
    return user


async def set_active(db: AsyncSession, user_id: int, is_active: bool, *, actor_id=None) -> User:
    """Soft status flag; users are never hard-deleted."""
    user = await get_user(db, user_id)
    previous = user.is_active
    user.is_active = is_active
    if not is_active:
        user.token_version = (user.token_version or 0) + 1
    db.add(user)
    record_audit_log(
        db,
        actor_id=actor_id,
        action="user.activated" if is_active else "user.deactivated",
        resource_type="user",
        resource_id=str(user.id),
        old_value={"is_active": previous},
        new_value={"is_active": is_active},
    )
    logger.info("User status changed", extra={"target_user_id": user.id, "is_active": is_active})
    return user
