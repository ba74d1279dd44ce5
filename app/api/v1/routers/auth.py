from fastapi import APIRouter, Depends, File, Form, Request, UploadFile
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.core.limiter import limiter
from app.core.settings import settings
from app.core.validation import validate
from app.db.session import get_db
from app.models import User
from app.schemas.auth import (
    LoginRequest,
    RegisterResponse,
    ResetPasswordRequest,
    SetNewPasswordRequest,
    TokenResponse,
    VerifyCodeRequest,
)
from app.schemas.common import MessageResponse
from app.schemas.users import UserOut
from app.services import auth as auth_service
from app.services.notifications import NotificationService

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/register", response_model=RegisterResponse, status_code=201)
@limiter.limit(lambda: f"{settings.rate_limit_per_minute}/minute")
async def register(
    request: Request,
    email: str | None = Form(default=None),
    password: str | None = Form(default=None),
    full_name: str | None = Form(default=None, alias="fullName"),
    national_id_number: str | None = Form(default=None, alias="nationalIdNumber"),
    phone_number: str | None = Form(default=None, alias="phoneNumber"),
    address: str | None = Form(default=None),
    date_of_birth: str | None = Form(default=None, alias="dateOfBirth"),
    gender: str | None = Form(default=None),
    id_image: UploadFile = File(..., alias="idImage"),
    profile_image: UploadFile = File(..., alias="profileImage"),
    db: AsyncSession = Depends(get_db),
    redis: Redis = Depends(deps.get_redis),
    notifier: NotificationService = Depends(deps.get_notifier),
) -> RegisterResponse:
    payload = validate(
        "register",
        {
            "email": email,
            "password": password,
            "fullName": full_name,
            "nationalIdNumber": national_id_number,
            "phoneNumber": phone_number,
            "address": address,
            "dateOfBirth": date_of_birth,
            "gender": gender,
        },
    )
    user = await auth_service.register(
        db, redis, notifier, payload, id_image=id_image, profile_image=profile_image
    )
    return RegisterResponse(user_id=user.id)


@router.post("/login", response_model=MessageResponse)
@limiter.limit(lambda: f"{settings.rate_limit_per_minute}/minute")
async def login(
    credentials: LoginRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    redis: Redis = Depends(deps.get_redis),
    notifier: NotificationService = Depends(deps.get_notifier),
) -> MessageResponse:
    client_ip = request.client.host if request.client else "unknown"
    await auth_service.login(db, redis, notifier, credentials, client_ip=client_ip)
    return MessageResponse(message="Verification code sent to your email")


@router.post("/verify-code", response_model=TokenResponse)
@limiter.limit(lambda: f"{settings.rate_limit_per_minute}/minute")
async def verify_code(
    payload: VerifyCodeRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    redis: Redis = Depends(deps.get_redis),
) -> TokenResponse:
    token = await auth_service.verify_code(db, redis, payload)
    return TokenResponse(access_token=token)


@router.post("/reset-password", response_model=MessageResponse)
@limiter.limit(lambda: f"{settings.rate_limit_per_minute}/minute")
async def reset_password(
    payload: ResetPasswordRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    notifier: NotificationService = Depends(deps.get_notifier),
) -> MessageResponse:
    await auth_service.reset_password(db, notifier, payload.email)
    return MessageResponse(message="If the account exists, a password reset link has been sent")


@router.post("/set-new-password", response_model=MessageResponse)
async def set_new_password(
    payload: SetNewPasswordRequest,
    db: AsyncSession = Depends(get_db),
) -> MessageResponse:
    await auth_service.set_new_password(db, payload)
    return MessageResponse(message="Password has been reset successfully")


@router.post("/logout", response_model=MessageResponse)
async def logout(
    current_user: User = Depends(deps.get_current_user),
    db: AsyncSession = Depends(get_db),
) -> MessageResponse:
    await auth_service.logout(db, current_user)
    return MessageResponse(message="Logged out")


@router.get("/me", response_model=UserOut)
async def read_me(current_user: User = Depends(deps.get_current_user)) -> UserOut:
    return current_user
