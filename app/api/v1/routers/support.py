from fastapi import APIRouter, Body, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.core.permissions import PermissionCode
from app.db.session import get_db
from app.models.user import User
from app.schemas.support import (
    ChatCreated,
    ChatMessageCreate,
    ChatStart,
    ContactMessageCreate,
    ContactMessageResponse,
    SupportMessageOut,
)
from app.services import support
from app.services.notifications import NotificationService

router = APIRouter(prefix="/support", tags=["support"])

_support_user = deps.require_permission(PermissionCode.SUPPORT_USE)


@router.post("/message", response_model=ContactMessageResponse, status_code=201)
async def send_contact_message(
    payload: ContactMessageCreate,
    current_user: User = Depends(_support_user),
    db: AsyncSession = Depends(get_db),
    notifier: NotificationService = Depends(deps.get_notifier),
) -> ContactMessageResponse:
    chat, message, delivered = await support.send_contact_message(
        db, notifier, current_user, payload.subject, payload.message
    )
    return ContactMessageResponse(chat_id=chat.id, message_id=message.id, delivered=delivered)


@router.post("/chat", response_model=ChatCreated, status_code=201)
async def start_live_chat(
    payload: ChatStart | None = Body(default=None),
    current_user: User = Depends(_support_user),
    db: AsyncSession = Depends(get_db),
) -> ChatCreated:
    chat = await support.start_live_chat(db, current_user, payload.subject if payload else None)
    await db.commit()
    return ChatCreated(chat_id=chat.id)


@router.post("/chat/{chat_id}/messages", response_model=SupportMessageOut, status_code=201)
async def post_chat_message(
    chat_id: int,
    payload: ChatMessageCreate,
    current_user: User = Depends(_support_user),
    db: AsyncSession = Depends(get_db),
) -> SupportMessageOut:
    chat = await support.get_accessible_chat(db, chat_id, current_user)
    message = await support.post_chat_message(db, chat, current_user, payload.message)
    await db.commit()
    return message


@router.get("/chat/{chat_id}/messages", response_model=list[SupportMessageOut])
async def get_chat_messages(
    chat_id: int,
    current_user: User = Depends(_support_user),
    db: AsyncSession = Depends(get_db),
) -> list[SupportMessageOut]:
    return await support.get_chat_messages(db, chat_id, current_user)


@router.delete("/chat/{chat_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_chat(
    chat_id: int,
    current_user: User = Depends(_support_user),
    db: AsyncSession = Depends(get_db),
) -> Response:
    await support.delete_chat(db, chat_id, current_user)
    await db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)
