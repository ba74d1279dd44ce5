from datetime import date, datetime

from pydantic import EmailStr, Field

from app.core.settings import settings
from app.schemas.auth import Gender
from app.schemas.common import CamelModel, NonEmptyStr


class UserOut(CamelModel):
    id: int
    email: EmailStr
    full_name: str
    national_id_number: str | None = None
    phone_number: str | None = None
    address: str | None = None
    date_of_birth: date | None = None
    gender: Gender | None = None
    email_verified: bool
    phone_verified: bool
    is_active: bool
    role_id: int | None = None
    created_at: datetime | None = None


class UserListResponse(CamelModel):
    items: list[UserOut]
    page: int
    limit: int
    total: int


class PaginationQuery(CamelModel):
    page: int = Field(default=1, gt=0)
    limit: int = Field(default=10, gt=0, le=100)


class ProfileUpdate(CamelModel):
    full_name: NonEmptyStr | None = Field(default=None, alias="name")
    email: EmailStr | None = None
    phone_number: NonEmptyStr | None = Field(default=None, alias="phone")
    address: NonEmptyStr | None = None


class SecurityUpdate(CamelModel):
    email_verified: bool | None = None
    phone_verified: bool | None = None


class ChangePasswordRequest(CamelModel):
    current_password: str = Field(min_length=1)
    new_password: str = Field(min_length=settings.password_min_length)


class UserStatusUpdate(CamelModel):
    status: bool


class RoleAssignment(CamelModel):
    role_id: int = Field(gt=0)


class NotificationOut(CamelModel):
    id: int
    title: str
    message: str
    is_read: bool
    created_at: datetime | None = None
