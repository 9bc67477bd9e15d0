from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Protocol

from comanda.schemas.events import MediaBlob

TEXT = "text"
DOCUMENT = "document"
INTERACTIVE_BUTTONS = "interactive_buttons"
FLOW = "flow"


@dataclass
class ReplyButton:
    id: str
    title: str


@dataclass
class OutboundMessage:
    to: str
    kind: str = TEXT
    text: str = ""
    buttons: list[ReplyButton] = field(default_factory=list)
    header: str | None = None
    footer: str | None = None
    document_url: str | None = None
    filename: str | None = None
    flow_id: str | None = None
    flow_cta: str | None = None

    def render(self) -> str:
        """Texto legível da mensagem, usado no simulador e nos logs."""
        parts = [part for part in (self.header, self.text, self.footer) if part]
        if self.kind == INTERACTIVE_BUTTONS and self.buttons:
            parts.append(" | ".join(f"[{button.title}]" for button in self.buttons))
        if self.kind == DOCUMENT and self.document_url:
            parts.append(f"📄 {self.filename or self.document_url}")
        if self.kind == FLOW and self.flow_cta:
            parts.append(f"▶ {self.flow_cta}")
        return "\n".join(parts)


def text_message(to: str, body: str) -> OutboundMessage:
    return OutboundMessage(to=to, kind=TEXT, text=body)


def text_messages(to: str, bodies: list[str]) -> list[OutboundMessage]:
    return [text_message(to, body) for body in bodies]


def document_message(to: str, url: str, *, filename: str, caption: str = "") -> OutboundMessage:
    return OutboundMessage(to=to, kind=DOCUMENT, text=caption, document_url=url, filename=filename)


def flow_message(to: str, body: str, *, flow_id: str, cta: str) -> OutboundMessage:
    return OutboundMessage(to=to, kind=FLOW, text=body, flow_id=flow_id, flow_cta=cta)


@dataclass
class WhatsAppSendResult:
    status: str
    provider_message_id: str | None = None
    error: str | None = None
    response_payload: dict[str, Any] | None = None


class WhatsAppProvider(Protocol):
    async def send(self, message: OutboundMessage) -> WhatsAppSendResult:
        ...

    async def download_media(self, media_id: str) -> MediaBlob:
        ...


SENSITIVE_KEYS = {"access_token", "verify_token", "webhook_secret", "authorization", "token"}


def _mask_value(value: Any) -> Any:
    if value is None:
        return None
    text = str(value)
    if len(text) <= 4:
        return "****"
    return f"****{text[-4:]}"


def sanitize_payload(payload: dict[str, Any]) -> dict[str, Any]:
    def _sanitize(value: Any) -> Any:
        if isinstance(value, dict):
            return {key: _sanitize_value(key, inner) for key, inner in value.items()}
        if isinstance(value, list):
            return [_sanitize(item) for item in value]
        return value

    def _sanitize_value(key: str, value: Any) -> Any:
        if key.lower() in SENSITIVE_KEYS:
            return _mask_value(value)
        return _sanitize(value)

    return _sanitize(payload)


def safe_json(payload: dict[str, Any]) -> str:
    try:
        return json.dumps(payload, ensure_ascii=False)
    except (TypeError, ValueError):
        return "{}"
