from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from urllib.parse import urlencode

from fastapi import UploadFile
from redis.asyncio import Redis
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.auth_utils import constant_time_verify, enforce_login_limits, record_login_attempt
from app.core.errors import ConflictError, UnauthorizedError, ValidationError
from app.core.security import (
    RESET_TOKEN_TYPE,
    create_access_token,
    create_reset_token,
    decode_token,
    get_password_hash,
    verify_password,
)
from app.core.settings import settings
from app.models.user import User
from app.schemas.auth import (
    LoginRequest,
    RegisterRequest,
    SetNewPasswordRequest,
    VerifyCodeRequest,
)
from app.services import authz
from app.services.audit import model_snapshot, record_audit_log
from app.services.local_uploads import resolve_local_path, save_identity_image, user_documents_subdir
from app.services.notifications import NotificationService
from app.services.otp import generate_otp, store_otp, verify_otp

logger = logging.getLogger(__name__)


async def get_user_by_email(db: AsyncSession, email: str) -> User | None:
    stmt = select(User).where(func.lower(User.email) == email.strip().lower())
    return (await db.execute(stmt)).scalar_one_or_none()


def _discard_uploads(paths: list[str]) -> None:
    base_dir = Path(settings.upload_dir)
    for relative_path in paths:
        try:
            resolve_local_path(base_dir, relative_path).unlink(missing_ok=True)
        except (ValueError, OSError):
            logger.warning("Could not remove orphaned upload", extra={"path": relative_path})


async def register(
    db: AsyncSession,
    redis: Redis,
    notifier: NotificationService,
    payload: RegisterRequest,
    *,
    id_image: UploadFile,
    profile_image: UploadFile,
) -> User:
    if await get_user_by_email(db, payload.email) is not None:
        raise ConflictError("User already exists")

    base_dir = Path(settings.upload_dir)
    subdir = user_documents_subdir()
    id_image_path = await save_identity_image(
        id_image, field="idImage", base_dir=base_dir, subdir=subdir, max_size_mb=settings.max_upload_size_mb
    )
    try:
        profile_image_path = await save_identity_image(
            profile_image,
            field="profileImage",
            base_dir=base_dir,
            subdir=subdir,
            max_size_mb=settings.max_upload_size_mb,
        )
    except ValidationError:
        _discard_uploads([id_image_path])
        raise

    default_role = await authz.get_default_role(db)
    user = User(
        email=payload.email.lower(),
        hashed_password=get_password_hash(payload.password),
        full_name=payload.full_name,
        national_id_number=payload.national_id_number,
        phone_number=payload.phone_number,
        address=payload.address,
        date_of_birth=payload.date_of_birth,
        gender=payload.gender.value,
        id_image_path=id_image_path,
        profile_image_path=profile_image_path,
        email_verified=False,
        phone_verified=False,
        is_active=True,
        role_id=default_role.id if default_role else None,
        token_version=0,
    )
    db.add(user)
    try:
        await db.flush()
    except IntegrityError as exc:
        await db.rollback()
        _discard_uploads([id_image_path, profile_image_path])
        raise ConflictError("User already exists") from exc

    record_audit_log(
        db,
        actor_id=user.id,
        action="user.registered",
        resource_type="user",
        resource_id=str(user.id),
        new_value=model_snapshot(user, exclude={"hashed_password"}),
    )
    await db.commit()

    code = generate_otp()
    await store_otp(redis, user.email, code)
    await notifier.send_verification_email(user.email, code)
    logger.info("User registered", extra={"registered_user_id": user.id})
    return user


async def login(
    db: AsyncSession,
    redis: Redis,
    notifier: NotificationService,
    payload: LoginRequest,
    *,
    client_ip: str,
) -> None:
    """Check credentials and send a one-time code; the token is issued by verify_code."""
    await enforce_login_limits(redis, client_ip, payload.email)
    user = await get_user_by_email(db, payload.email)
    password_ok = constant_time_verify(user.hashed_password if user else None, payload.password)
    if not user or not password_ok or not user.is_active:
        await record_login_attempt(redis, payload.email, success=False)
        logger.info("Login rejected", extra={"client_ip": client_ip})
        raise UnauthorizedError("Invalid credentials", code="invalid_credentials")

    await record_login_attempt(redis, payload.email, success=True)
    code = generate_otp()
    await store_otp(redis, user.email, code)
    await notifier.send_verification_email(user.email, code)
    logger.info("Login code issued", extra={"login_user_id": user.id})


async def verify_code(db: AsyncSession, redis: Redis, payload: VerifyCodeRequest) -> str:
    user = await get_user_by_email(db, payload.email)
    if user is None or not user.is_active:
        raise UnauthorizedError("Invalid or expired verification code", code="invalid_code")
    await verify_otp(redis, user.email, payload.verification_code)

    if not user.email_verified:
        user.email_verified = True
    user.last_login_at = datetime.now(timezone.utc)
    db.add(user)
    await db.commit()
    return create_access_token(str(user.id), token_version=user.token_version)


def build_reset_link(token: str) -> str:
    return f"{settings.frontend_url.rstrip('/')}/reset-password?{urlencode({'token': token})}"


async def reset_password(db: AsyncSession, notifier: NotificationService, email: str) -> None:
    """Always succeeds from the caller's view so account existence is not revealed."""
    user = await get_user_by_email(db, email)
    if user is None or not user.is_active:
        logger.info("Password reset requested for unknown account")
        return
    token = create_reset_token(str(user.id), token_version=user.token_version)
    await notifier.send_password_reset_email(user.email, build_reset_link(token))
    logger.info("Password reset link issued", extra={"reset_user_id": user.id})


async def set_new_password(db: AsyncSession, payload: SetNewPasswordRequest) -> User:
    invalid = UnauthorizedError("Invalid or expired reset token", code="invalid_token")
    try:
        claims = decode_token(payload.reset_token, expected_type=RESET_TOKEN_TYPE)
        user_id = int(claims.get("sub"))
    except (ValueError, TypeError) as exc:
        raise invalid from exc

    user = (await db.execute(select(User).where(User.id == user_id))).scalar_one_or_none()
    if user is None or not user.is_active:
        raise invalid
    if claims.get("tv") is not None and claims.get("tv") != user.token_version:
        raise invalid
    if verify_password(payload.new_password, user.hashed_password):
        raise ValidationError.single("newPassword", "New password must differ from the current password")

    user.hashed_password = get_password_hash(payload.new_password)
    user.token_version = (user.token_version or 0) + 1
    db.add(user)
    record_audit_log(
        db,
        actor_id=user.id,
        action="user.password_reset",
        resource_type="user",
        resource_id=str(user.id),
    )
    await db.commit()
    return user


async def logout(db: AsyncSession, user: User) -> None:
    user.token_version = (user.token_version or 0) + 1
    db.add(user)
    await db.commit()
