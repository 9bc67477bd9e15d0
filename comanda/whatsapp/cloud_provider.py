from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Any

import httpx

from comanda.core.config import META_API_VERSION, META_WA_ACCESS_TOKEN, META_WA_PHONE_NUMBER_ID
from comanda.schemas.events import MediaBlob
from comanda.whatsapp.base import (
    DOCUMENT,
    FLOW,
    INTERACTIVE_BUTTONS,
    OutboundMessage,
    WhatsAppProvider,
    WhatsAppSendResult,
    safe_json,
    sanitize_payload,
)
from comanda.whatsapp.interactive import to_cloud_interactive

logger = logging.getLogger(__name__)

_MEDIA_TYPES = {"image", "document"}


def _contact_to_vcard(contact: dict[str, Any]) -> str:
    name = ((contact.get("name") or {}).get("formatted_name")) or ""
    lines = ["BEGIN:VCARD", "VERSION:3.0"]
    if name:
        lines.append(f"FN:{name}")
    for phone in contact.get("phones") or []:
        wa_id = phone.get("wa_id")
        number = phone.get("phone") or wa_id or ""
        if wa_id:
            lines.append(f"TEL;type=CELL;waid={wa_id}:{number}")
        else:
            lines.append(f"TEL;type=CELL:{number}")
    lines.append("END:VCARD")
    return "\n".join(lines)


def _parse_timestamp(value: Any) -> datetime | None:
    try:
        return datetime.fromtimestamp(int(value), tz=timezone.utc)
    except (TypeError, ValueError):
        return None


def parse_cloud_webhook(payload: dict[str, Any]) -> list[dict[str, Any]]:
    messages: list[dict[str, Any]] = []
    for entry in payload.get("entry", []) or []:
        for change in entry.get("changes", []) or []:
            value = change.get("value") or {}

            contacts = value.get("contacts") or []
            contact_name = None
            if contacts:
                contact_name = ((contacts[0].get("profile") or {}).get("name")) or None

            for msg in value.get("messages", []) or []:
                msg_type = msg.get("type") or "text"
                message_id = msg.get("id")
                from_number = msg.get("from")
                if not message_id or not from_number:
                    continue

                text = ""
                reply_id = None
                media = None
                vcards: list[str] = []
                if msg_type == "text":
                    text = ((msg.get("text") or {}).get("body")) or ""
                elif msg_type == "interactive":
                    interactive = msg.get("interactive") or {}
                    reply = interactive.get("button_reply") or interactive.get("list_reply") or {}
                    reply_id = reply.get("id")
                    text = reply.get("title") or ""
                elif msg_type == "button":
                    button = msg.get("button") or {}
                    reply_id = button.get("payload")
                    text = button.get("text") or ""
                elif msg_type in _MEDIA_TYPES:
                    body = msg.get(msg_type) or {}
                    media = {
                        "media_id": body.get("id"),
                        "mime_type": body.get("mime_type") or "application/octet-stream",
                        "filename": body.get("filename"),
                    }
                    text = body.get("caption") or ""
                elif msg_type == "contacts":
                    vcards = [_contact_to_vcard(contact) for contact in msg.get("contacts") or []]

                messages.append(
                    {
                        "message_id": message_id,
                        "from_number": from_number,
                        "text": text.strip(),
                        "message_type": msg_type,
                        "reply_id": reply_id,
                        "media": media,
                        "vcards": vcards,
                        "timestamp": _parse_timestamp(msg.get("timestamp")),
                        "contact_name": contact_name,
                    }
                )
    return messages


def _should_retry(status_code: int, body_text: str) -> bool:
    # Erros temporários / instabilidade
    if status_code in (500, 502, 503, 504):
        return True

    # Erro genérico frequente do Cloud API
    try:
        data = json.loads(body_text or "{}")
    except json.JSONDecodeError:
        return False
    code = (data.get("error") or {}).get("code")
    return code == 131000


def _backoff_seconds(attempt: int) -> float:
    # 1s, 2s, 4s... (máx 8s)
    sec = 1.0 * (2 ** max(0, attempt - 1))
    return min(sec, 8.0)


def build_cloud_payload(message: OutboundMessage) -> dict[str, Any]:
    payload: dict[str, Any] = {"messaging_product": "whatsapp", "to": message.to}
    if message.kind == INTERACTIVE_BUTTONS:
        payload["type"] = "interactive"
        payload["interactive"] = to_cloud_interactive(message)
    elif message.kind == DOCUMENT:
        payload["type"] = "document"
        payload["document"] = {
            "link": message.document_url,
            "filename": message.filename,
            "caption": message.text,
        }
    elif message.kind == FLOW:
        payload["type"] = "interactive"
        payload["interactive"] = {
            "type": "flow",
            "body": {"text": message.text},
            "action": {
                "name": "flow",
                "parameters": {
                    "flow_message_version": "3",
                    "flow_id": message.flow_id,
                    "flow_cta": message.flow_cta,
                },
            },
        }
    else:
        payload["type"] = "text"
        payload["text"] = {"preview_url": False, "body": message.text}
    return payload


class CloudWhatsAppProvider(WhatsAppProvider):
    MAX_RETRIES = 3

    def __init__(
        self,
        *,
        access_token: str | None = None,
        phone_number_id: str | None = None,
        api_version: str | None = None,
        timeout: float = 20.0,
        sleep=asyncio.sleep,
    ) -> None:
        self.access_token = access_token or META_WA_ACCESS_TOKEN
        self.phone_number_id = phone_number_id or META_WA_PHONE_NUMBER_ID
        self.api_version = api_version or META_API_VERSION
        self.timeout = timeout
        self._sleep = sleep

    @property
    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.access_token}", "Content-Type": "application/json"}

    async def send(self, message: OutboundMessage) -> WhatsAppSendResult:
        if not self.access_token or not self.phone_number_id:
            return WhatsAppSendResult(status="failed", error="Credenciais do WhatsApp Cloud incompletas")

        url = f"https://graph.facebook.com/{self.api_version}/{self.phone_number_id}/messages"
        payload = build_cloud_payload(message)
        last_error: str | None = None

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            for attempt in range(1, self.MAX_RETRIES + 1):
                try:
                    response = await client.post(url, headers=self._headers, json=payload)
                except (httpx.TimeoutException, httpx.NetworkError) as exc:
                    last_error = str(exc)
                    if attempt < self.MAX_RETRIES:
                        await self._sleep(_backoff_seconds(attempt))
                        continue
                    break

                body_text = response.text
                if 200 <= response.status_code < 300:
                    try:
                        data = response.json()
                    except json.JSONDecodeError:
                        data = {"raw": body_text}
                    provider_id = ((data.get("messages") or [{}])[0].get("id"))
                    return WhatsAppSendResult(
                        status="sent",
                        provider_message_id=provider_id,
                        response_payload=sanitize_payload(data),
                    )

                last_error = f"Erro WhatsApp {response.status_code}: {body_text}"
                if _should_retry(response.status_code, body_text) and attempt < self.MAX_RETRIES:
                    await self._sleep(_backoff_seconds(attempt))
                    continue
                break

        logger.warning(
            "whatsapp cloud send failed to=%s payload=%s error=%s",
            message.to,
            safe_json(sanitize_payload(payload)),
            last_error,
        )
        return WhatsAppSendResult(status="failed", error=last_error)

    async def download_media(self, media_id: str) -> MediaBlob:
        meta_url = f"https://graph.facebook.com/{self.api_version}/{media_id}"
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            meta_response = await client.get(meta_url, headers=self._headers)
            meta_response.raise_for_status()
            meta = meta_response.json()
            media_response = await client.get(meta["url"], headers=self._headers)
            media_response.raise_for_status()
        return MediaBlob(
            content=media_response.content,
            mime_type=meta.get("mime_type") or "application/octet-stream",
            media_id=media_id,
        )
