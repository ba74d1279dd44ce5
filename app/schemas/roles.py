from datetime import datetime

from pydantic import field_validator

from app.core.permissions import PermissionCode
from app.schemas.common import CamelModel, normalize_description_text, normalize_title_text


class RoleCreate(CamelModel):
    name: str
    description: str | None = None
    permissions: list[str] = []

    @field_validator("name")
    @classmethod
    def normalize_name(cls, v: str) -> str:
        value = normalize_title_text(v)
        if not value:
            raise ValueError("Role name is required")
        return value

    @field_validator("description")
    @classmethod
    def normalize_description(cls, v: str | None) -> str | None:
        return normalize_description_text(v)

    @field_validator("permissions")
    @classmethod
    def known_permissions(cls, v: list[str]) -> list[str]:
        unknown = PermissionCode.unknown(v or [])
        if unknown:
            raise ValueError(f"Unknown permissions: {', '.join(unknown)}")
        return PermissionCode.normalize(v or [])


class RoleOut(CamelModel):
    id: int
    name: str
    description: str | None = None
    is_system_role: bool
    permissions: list[str]
    created_at: datetime | None = None


class RoleListResponse(CamelModel):
    items: list[RoleOut]
