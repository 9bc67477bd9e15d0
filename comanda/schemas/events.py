from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class EventKind(str, Enum):
    TEXT = "text"
    REPLY = "reply"
    MEDIA = "media"
    CONTACTS = "contacts"
    # disparado pelo varredor de inatividade
    TICK = "tick"
    # continuação interna de um passo que não espera o usuário
    CONTINUE = "continue"


class MediaBlob(BaseModel):
    content: bytes = b""
    mime_type: str = "application/octet-stream"
    media_id: str | None = None
    filename: str | None = None


class InboundEvent(BaseModel):
    user_id: str
    raw_text: str | None = None
    media: MediaBlob | None = None
    structured_reply_id: str | None = None
    vcards: list[str] = Field(default_factory=list)
    message_id: str | None = None
    timestamp: datetime | None = None
    internal: EventKind | None = None

    @property
    def kind(self) -> EventKind:
        if self.internal is not None:
            return self.internal
        if self.vcards or "BEGIN:VCARD" in (self.raw_text or ""):
            return EventKind.CONTACTS
        if self.media is not None:
            return EventKind.MEDIA
        if self.structured_reply_id:
            return EventKind.REPLY
        return EventKind.TEXT

    @property
    def text(self) -> str:
        return (self.raw_text or "").strip()

    def vcard_text(self) -> str:
        if self.vcards:
            return "\n".join(self.vcards)
        return self.raw_text or ""

    @classmethod
    def tick(cls, user_id: str) -> "InboundEvent":
        return cls(user_id=user_id, internal=EventKind.TICK)

    @classmethod
    def continuation(cls, user_id: str) -> "InboundEvent":
        return cls(user_id=user_id, internal=EventKind.CONTINUE)
