from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.core.permissions import PermissionCode
from app.db.session import get_db
from app.models.user import User
from app.schemas.roles import RoleCreate, RoleListResponse, RoleOut
from app.services import roles

router = APIRouter(prefix="/roles", tags=["roles"])


@router.get("", response_model=RoleListResponse, summary="List roles")
async def list_roles(
    _: User = Depends(deps.require_permission(PermissionCode.ROLE_VIEW)),
    db: AsyncSession = Depends(get_db),
) -> RoleListResponse:
    return RoleListResponse(items=await roles.list_roles(db))


@router.post("", response_model=RoleOut, status_code=201, summary="Create a custom role")
async def create_role(
    payload: RoleCreate,
    current_user: User = Depends(deps.require_permission(PermissionCode.ROLE_MANAGE)),
    db: AsyncSession = Depends(get_db),
) -> RoleOut:
    role = await roles.create_role(db, payload, actor_id=current_user.id)
    await db.commit()
    await db.refresh(role)
    return role


@router.delete("/{role_id}", status_code=status.HTTP_204_NO_CONTENT, summary="Delete a custom role")
async def delete_role(
    role_id: int,
    current_user: User = Depends(deps.require_permission(PermissionCode.ROLE_MANAGE)),
    db: AsyncSession = Depends(get_db),
) -> Response:
    await roles.delete_role(db, role_id, actor_id=current_user.id)
    await db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)
