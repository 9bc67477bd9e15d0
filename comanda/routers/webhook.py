import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import PlainTextResponse

from comanda.core.config import META_WA_VERIFY_TOKEN
from comanda.deps import get_engine
from comanda.fsm.engine import ConversationEngine
from comanda.schemas.events import InboundEvent, MediaBlob
from comanda.whatsapp.cloud_provider import parse_cloud_webhook

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/webhook")
async def verify_webhook(request: Request):
    qp = request.query_params
    mode = qp.get("hub.mode")
    token = qp.get("hub.verify_token")
    challenge = qp.get("hub.challenge")

    if mode == "subscribe" and META_WA_VERIFY_TOKEN and token == META_WA_VERIFY_TOKEN:
        return PlainTextResponse(challenge or "")

    raise HTTPException(status_code=403, detail="Verify token inválido")


async def _to_event(engine: ConversationEngine, extracted: dict) -> InboundEvent:
    media = None
    raw_media = extracted.get("media")
    if raw_media and raw_media.get("media_id"):
        media = await engine.sender.download_media(raw_media["media_id"])
        # o download nem sempre traz o nome original do arquivo
        if not media.filename and raw_media.get("filename"):
            media = media.model_copy(update={"filename": raw_media["filename"]})
    elif raw_media:
        media = MediaBlob(mime_type=raw_media.get("mime_type") or "application/octet-stream")

    return InboundEvent(
        user_id=extracted["from_number"],
        raw_text=extracted.get("text") or None,
        media=media,
        structured_reply_id=extracted.get("reply_id"),
        vcards=extracted.get("vcards") or [],
        message_id=extracted["message_id"],
        timestamp=extracted.get("timestamp"),
    )


@router.post("/webhook")
async def whatsapp_webhook(request: Request, engine: ConversationEngine = Depends(get_engine)):
    payload = await request.json()
    messages = parse_cloud_webhook(payload)
    if not messages:
        return {"status": "ignored"}

    handled = 0
    for extracted in messages:
        logger.info(
            "WhatsApp recebido: from=%s message_id=%s type=%s",
            extracted["from_number"],
            extracted["message_id"],
            extracted.get("message_type"),
        )
        try:
            event = await _to_event(engine, extracted)
            reply = await engine.handle(event)
        except Exception:
            # 200 mesmo assim: a Meta reenviaria a mensagem indefinidamente
            logger.exception("failed to handle message %s", extracted["message_id"])
            continue
        if not reply.ignored:
            handled += 1

    return {"status": "ok", "handled": handled}
