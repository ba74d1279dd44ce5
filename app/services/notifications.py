"""Out-of-band messaging: e-mail style delivery plus in-app notification rows.

Delivery is best effort. A failing or slow backend is logged and reported as
``False``; loan and payment state never depends on it.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.settings import Settings
from app.models.notification import Notification

logger = logging.getLogger(__name__)


class MailBackend(Protocol):
    async def send(self, *, to: str, subject: str, body: str, metadata: dict[str, Any]) -> None: ...

    async def aclose(self) -> None: ...


class LoggingMailBackend:
    """Writes outgoing mail to the log stream; the default for local runs."""

    def __init__(self, sender: str) -> None:
        self.sender = sender

    async def send(self, *, to: str, subject: str, body: str, metadata: dict[str, Any]) -> None:
        logger.info(
            "Outgoing mail",
            extra={"mail_from": self.sender, "mail_to": to, "subject": subject, "metadata": metadata},
        )

    async def aclose(self) -> None:
        return None


class WebhookMailBackend:
    def __init__(
        self,
        url: str,
        *,
        sender: str,
        timeout: float,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.url = url
        self.sender = sender
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def send(self, *, to: str, subject: str, body: str, metadata: dict[str, Any]) -> None:
        response = await self._client.post(
            self.url,
            json={"from": self.sender, "to": to, "subject": subject, "body": body, "metadata": metadata},
        )
        response.raise_for_status()

    async def aclose(self) -> None:
        await self._client.aclose()


class NotificationService:
    def __init__(self, backend: MailBackend, *, support_address: str) -> None:
        self.backend = backend
        self.support_address = support_address

    async def _deliver(self, kind: str, *, to: str, subject: str, body: str, metadata: dict[str, Any]) -> bool:
        try:
            await self.backend.send(to=to, subject=subject, body=body, metadata=metadata)
        except httpx.HTTPError as exc:
            logger.warning(
                "Notification delivery failed",
                extra={"kind": kind, "error": exc.__class__.__name__},
            )
            return False
        logger.info("Notification delivered", extra={"kind": kind})
        return True

    async def send_verification_email(self, email: str, code: str) -> bool:
        return await self._deliver(
            "verification",
            to=email,
            subject="Your verification code",
            body=f"Your verification code is {code}",
            metadata={},
        )

    async def send_password_reset_email(self, email: str, link: str) -> bool:
        return await self._deliver(
            "password_reset",
            to=email,
            subject="Password reset request",
            body=f"You requested a password reset. Click here to reset: {link}",
            metadata={},
        )

    async def send_contact_message(self, subject: str, body: str, chat_id: int, user_id: int) -> bool:
        return await self._deliver(
            "contact",
            to=self.support_address,
            subject=f"Support: {subject}",
            body=body,
            metadata={"chatId": chat_id, "userId": user_id},
        )

    async def aclose(self) -> None:
        await self.backend.aclose()


def build_notifier(settings: Settings) -> NotificationService:
    if settings.mail_backend == "webhook":
        if not settings.mail_webhook_url:
            raise RuntimeError("MAIL_WEBHOOK_URL is required when MAIL_BACKEND=webhook")
        backend: MailBackend = WebhookMailBackend(
            settings.mail_webhook_url,
            sender=settings.mail_from,
            timeout=settings.mail_timeout_seconds,
        )
    else:
        backend = LoggingMailBackend(settings.mail_from)
    return NotificationService(backend, support_address=settings.mail_from)


def record_user_notification(db: AsyncSession, user_id: int, title: str, message: str) -> Notification:
    notification = Notification(user_id=user_id, title=title, message=message, is_read=False)
    db.add(notification)
    return notification


async def list_notifications(db: AsyncSession, user_id: int) -> list[Notification]:
    stmt = (
        select(Notification)
        .where(Notification.user_id == user_id)
        .order_by(Notification.created_at.desc(), Notification.id.desc())
    )
    return list((await db.execute(stmt)).scalars().all())
