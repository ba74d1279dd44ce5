from __future__ import annotations

from typing import Iterable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import ForbiddenError
from app.core.permissions import CUSTOMER_ROLE, SYSTEM_ROLE_DEFINITIONS, PermissionCode
from app.models.role import Role
from app.models.user import User


def _code(operation: PermissionCode | str) -> str:
    return operation.value if isinstance(operation, PermissionCode) else str(operation)


def role_permissions(role: Role | None) -> set[str]:
    if role is None:
        return set()
    raw: Iterable[str] = role.permissions or []
    return set(PermissionCode.normalize(raw))


def can_perform(role: Role | None, operation: PermissionCode | str) -> bool:
    """Pure check: a missing role can do nothing, otherwise the operation must be granted."""
    return _code(operation) in role_permissions(role)


def check_permission(user: User, operation: PermissionCode | str) -> bool:
    if not user.is_active:
        return False
    return can_perform(user.role, operation)


def ensure_permission(user: User, operation: PermissionCode | str) -> None:
    if not check_permission(user, operation):
        raise ForbiddenError(f"Missing permission: {_code(operation)}")


def ensure_self_or_permission(user: User, owner_id: int, operation: PermissionCode | str) -> None:
    """Owners may act on their own records; everyone else needs the broader permission."""
    if user.id == owner_id:
        return
    if not check_permission(user, operation):
        raise ForbiddenError("Not allowed to access another user's resources")


async def seed_system_roles(db: AsyncSession) -> dict[str, Role]:
    """Ensure the built-in roles exist with their current permission sets."""
    existing_stmt = select(Role).where(Role.is_system_role.is_(True))
    existing_result = await db.execute(existing_stmt)
    existing = {role.name: role for role in existing_result.scalars().all()}

    seeded: dict[str, Role] = {}
    for name, definition in SYSTEM_ROLE_DEFINITIONS.items():
        role = existing.get(name)
        if role:
            role.permissions = definition["permissions"]
            role.description = definition["description"]
        else:
            role = Role(
                name=name,
                description=definition["description"],
                is_system_role=True,
                permissions=definition["permissions"],
            )
            db.add(role)
        seeded[name] = role
    await db.flush()
    return seeded


async def get_default_role(db: AsyncSession) -> Role | None:
    stmt = select(Role).where(Role.name == CUSTOMER_ROLE)
    return (await db.execute(stmt)).scalar_one_or_none()


def ensure_owner_access(
    user: User,
    owner_id: int,
    *,
    own: PermissionCode | str,
    any_: PermissionCode | str,
) -> None:
    """Allow the broad permission for anyone, the narrow one only for the owner."""
    if check_permission(user, any_):
        return
    if user.id == owner_id and check_permission(user, own):
        return
    raise ForbiddenError("Not allowed to access this resource")
