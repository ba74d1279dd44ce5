from __future__ import annotations

import json
from http import HTTPStatus
from typing import Any

from starlette.datastructures import Headers
from starlette.types import ASGIApp, Message, Receive, Scope, Send


def _success_code(status_code: int) -> str:
    mapping = {
        200: "ok",
        201: "created",
        202: "accepted",
    }
    return mapping.get(status_code, "ok")


def _success_message(status_code: int) -> str:
    try:
        return HTTPStatus(status_code).phrase
    except ValueError:
        return "Success"


def build_success_envelope(data: Any, status_code: int) -> dict[str, Any]:
    return {
        "code": _success_code(status_code),
        "message": _success_message(status_code),
        "data": data,
        "details": {},
    }


def _is_enveloped(payload: Any) -> bool:
    if not isinstance(payload, dict):
        return False
    return "code" in payload and "message" in payload and ("data" in payload or "details" in payload)


def _should_wrap(status_code: int, headers: Headers) -> bool:
    if status_code == 204:
        return True
    if status_code < 200 or status_code >= 300:
        return False
    return headers.get("content-type", "").startswith("application/json")


class ResponseEnvelopeMiddleware:
    """Wrap successful JSON bodies as `{code, message, data, details}`; 204 becomes a 200 envelope."""

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        start_message: Message | None = None
        body_parts: list[bytes] = []

        async def send_enveloped(message: Message) -> None:
            nonlocal start_message
            if message["type"] == "http.response.start":
                if _should_wrap(message["status"], Headers(raw=message.get("headers", []))):
                    start_message = message
                    return
                await send(message)
                return

            if message["type"] != "http.response.body" or start_message is None:
                await send(message)
                return

            body_parts.append(message.get("body", b""))
            if message.get("more_body", False):
                return

            raw_body = b"".join(body_parts)
            status_code = start_message["status"]
            try:
                payload = json.loads(raw_body) if raw_body else None
            except ValueError:
                await send(start_message)
                await send({"type": "http.response.body", "body": raw_body})
                return

            if status_code == 204:
                status_code = 200
            if not _is_enveloped(payload):
                payload = build_success_envelope(payload, status_code)
            body = json.dumps(payload).encode("utf-8")
            headers = [
                (key, value)
                for key, value in start_message.get("headers", [])
                if key.lower() not in {b"content-length", b"content-type"}
            ]
            headers.append((b"content-type", b"application/json"))
            headers.append((b"content-length", str(len(body)).encode()))
            await send({"type": "http.response.start", "status": status_code, "headers": headers})
            await send({"type": "http.response.body", "body": body})

        await self.app(scope, receive, send_enveloped)


def register_response_envelope(app) -> None:
    app.add_middleware(ResponseEnvelopeMiddleware)
