from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import InvalidStateError, NotFoundError
from app.core.permissions import PermissionCode
from app.models.support import SupportChat, SupportMessage
from app.models.user import User
from app.services import authz
from app.services.audit import record_audit_log
from app.services.notifications import NotificationService

logger = logging.getLogger(__name__)


async def _get_chat_or_404(db: AsyncSession, chat_id: int) -> SupportChat:
    chat = (await db.execute(select(SupportChat).where(SupportChat.id == chat_id))).scalar_one_or_none()
    if chat is None:
        raise NotFoundError("Chat not found")
    return chat


async def get_accessible_chat(db: AsyncSession, chat_id: int, user: User) -> SupportChat:
    chat = await _get_chat_or_404(db, chat_id)
    authz.ensure_self_or_permission(user, chat.user_id, PermissionCode.SUPPORT_MANAGE)
    return chat


async def start_live_chat(db: AsyncSession, user: User, subject: str | None = None) -> SupportChat:
    chat = SupportChat(user_id=user.id, subject=subject, status="open")
    db.add(chat)
    await db.flush()
    logger.info("Support chat started", extra={"chat_id": chat.id})
    return chat


async def post_chat_message(db: AsyncSession, chat: SupportChat, user: User, text: str) -> SupportMessage:
    if chat.status != "open":
        raise InvalidStateError("Chat is closed")
    message = SupportMessage(chat_id=chat.id, sender_user_id=user.id, body=text)
    db.add(message)
    await db.flush()
    return message


async def send_contact_message(
    db: AsyncSession,
    notifier: NotificationService,
    user: User,
    subject: str,
    text: str,
) -> tuple[SupportChat, SupportMessage, bool]:
    """Open a chat carrying the message, commit it, then forward it to the support inbox."""
    chat = await start_live_chat(db, user, subject)
    message = await post_chat_message(db, chat, user, text)
    await db.commit()
    delivered = await notifier.send_contact_message(subject, text, chat.id, user.id)
    return chat, message, delivered


async def get_chat_messages(db: AsyncSession, chat_id: int, user: User) -> list[SupportMessage]:
    chat = await get_accessible_chat(db, chat_id, user)
    stmt = (
        select(SupportMessage)
        .where(SupportMessage.chat_id == chat.id)
        .order_by(SupportMessage.created_at.asc(), SupportMessage.id.asc())
    )
    return list((await db.execute(stmt)).scalars().all())


async def delete_chat(db: AsyncSession, chat_id: int, user: User) -> None:
    chat = await get_accessible_chat(db, chat_id, user)
    await db.delete(chat)
    record_audit_log(
        db,
        actor_id=user.id,
        action="support_chat.deleted",
        resource_type="support_chat",
        resource_id=str(chat_id),
    )
    logger.info("Support chat deleted", extra={"chat_id": chat_id})
