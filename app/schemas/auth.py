from datetime import date
from enum import Enum

from pydantic import EmailStr, Field

from app.core.settings import settings
from app.schemas.common import CamelModel, NonEmptyStr


class Gender(str, Enum):
    MALE = "male"
    FEMALE = "female"
    OTHER = "other"


class RegisterRequest(CamelModel):
    email: EmailStr
    password: str = Field(min_length=settings.password_min_length)
    full_name: NonEmptyStr
    national_id_number: NonEmptyStr
    phone_number: NonEmptyStr
    address: NonEmptyStr
    date_of_birth: date
    gender: Gender


class RegisterResponse(CamelModel):
    message: str = "User registered successfully"
    user_id: int


class LoginRequest(CamelModel):
    email: EmailStr
    password: str = Field(min_length=settings.password_min_length)


class VerifyCodeRequest(CamelModel):
    email: EmailStr
    verification_code: str = Field(
        min_length=settings.otp_length,
        max_length=settings.otp_length,
        pattern=rf"^[0-9]{{{settings.otp_length}}}$",
    )


class ResetPasswordRequest(CamelModel):
    email: EmailStr


class SetNewPasswordRequest(CamelModel):
    reset_token: NonEmptyStr
    new_password: str = Field(min_length=settings.password_min_length)


class TokenResponse(CamelModel):
    access_token: str
    token_type: str = "bearer"
