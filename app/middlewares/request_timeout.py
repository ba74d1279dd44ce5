from __future__ import annotations

import asyncio
import json
import logging

from starlette.types import ASGIApp, Message, Receive, Scope, Send

logger = logging.getLogger(__name__)


class RequestTimeoutMiddleware:
    """Bound each request; answer 504 when nothing was sent before the deadline."""

    def __init__(self, app: ASGIApp, timeout_seconds: float | None = None) -> None:
        self.app = app
        self._timeout = timeout_seconds if timeout_seconds and timeout_seconds > 0 else None

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or self._timeout is None:
            await self.app(scope, receive, send)
            return

        response_started = False

        async def send_tracking(message: Message) -> None:
            nonlocal response_started
            if message["type"] == "http.response.start":
                response_started = True
            await send(message)

        try:
            await asyncio.wait_for(self.app(scope, receive, send_tracking), timeout=self._timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "Request timed out",
                extra={"path": scope.get("path"), "timeout_seconds": self._timeout},
            )
            if response_started:
                return
            body = json.dumps({
                "code": "request_timeout",
                "message": "Request timed out",
                "data": None,
                "details": {"timeoutSeconds": self._timeout},
            }).encode()
            await send({
                "type": "http.response.start",
                "status": 504,
                "headers": [
                    (b"content-type", b"application/json"),
                    (b"content-length", str(len(body)).encode()),
                ],
            })
            await send({
                "type": "http.response.body",
                "body": body,
            })
