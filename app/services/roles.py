from __future__ import annotations

import logging

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import ConflictError, InvalidStateError, NotFoundError
from app.models.role import Role
from app.models.user import User
from app.schemas.roles import RoleCreate
from app.services.audit import model_snapshot, record_audit_log

logger = logging.getLogger(__name__)


async def list_roles(db: AsyncSession) -> list[Role]:
    stmt = select(Role).order_by(Role.name)
    return list((await db.execute(stmt)).scalars().all())


async def create_role(db: AsyncSession, payload: RoleCreate, *, actor_id=None) -> Role:
    existing = await db.execute(select(Role.id).where(func.lower(Role.name) == payload.name.lower()))
    if existing.scalar_one_or_none() is not None:
        raise ConflictError("Role already exists")

    role = Role(
        name=payload.name,
        description=payload.description,
        is_system_role=False,
        permissions=payload.permissions,
    )
    db.add(role)
    try:
        await db.flush()
    except IntegrityError as exc:
        await db.rollback()
        raise ConflictError("Role already exists") from exc

    record_audit_log(
        db,
        actor_id=actor_id,
        action="role.created",
        resource_type="role",
        resource_id=str(role.id),
        new_value=model_snapshot(role),
    )
    logger.info("Role created", extra={"role_id": role.id, "role_name": role.name})
    return role


async def delete_role(db: AsyncSession, role_id: int, *, actor_id=None) -> None:
    role = (await db.execute(select(Role).where(Role.id == role_id))).scalar_one_or_none()
    if role is None:
        raise NotFoundError("Role not found")
    if role.is_system_role:
        raise InvalidStateError("System roles cannot be deleted")

    assigned = (
        await db.execute(select(func.count(User.id)).where(User.role_id == role_id))
    ).scalar_one()
    if assigned:
        raise ConflictError(
            "Role is still assigned to users",
            code="role_in_use",
            details={"assignedUsers": assigned},
        )

    snapshot = model_snapshot(role)
    await db.delete(role)
    record_audit_log(
        db,
        actor_id=actor_id,
        action="role.deleted",
        resource_type="role",
        resource_id=str(role_id),
        old_value=snapshot,
    )
    logger.info("Role deleted", extra={"role_id": role_id})


async def assign_role(db: AsyncSession, user_id: int, role_id: int, *, actor_id=None) -> User:
    user = (await db.execute(select(User).where(User.id == user_id))).scalar_one_or_none()
    if user is None:
        raise NotFoundError("User not found")
    role = (await db.execute(select(Role).where(Role.id == role_id))).scalar_one_or_none()
    if role is None:
        raise NotFoundError("Role not found")

    old_role_id = user.role_id
    user.role_id = role.id
    db.add(user)
    record_audit_log(
        db,
        actor_id=actor_id,
        action="user.role_assigned",
        resource_type="user",
        resource_id=str(user.id),
        old_value={"role_id": old_role_id},
        new_value={"role_id": role.id},
    )
    logger.info("Role assigned", extra={"target_user_id": user.id, "role_id": role.id})
    return user
