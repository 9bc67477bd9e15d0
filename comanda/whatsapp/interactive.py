from __future__ import annotations

import logging
from typing import Any, Iterable

from comanda.whatsapp.base import INTERACTIVE_BUTTONS, OutboundMessage, ReplyButton

logger = logging.getLogger(__name__)

MAX_BUTTONS = 3
MAX_BUTTON_TITLE = 20
MAX_BODY = 1024
MAX_HEADER = 60
MAX_FOOTER = 60


def _truncate(value: str, limit: int) -> str:
    if len(value) <= limit:
        return value
    return value[:limit]


def build_buttons_message(
    to: str,
    body: str,
    buttons: Iterable[tuple[str, str]],
    *,
    header: str | None = None,
    footer: str | None = None,
) -> OutboundMessage:
    """Mensagem com botões de resposta respeitando os limites da Cloud API.

    No máximo 3 botões (o excedente é descartado), títulos com até 20
    caracteres, corpo até 1024 e cabeçalho/rodapé até 60.
    """
    pairs = list(buttons)
    if len(pairs) > MAX_BUTTONS:
        logger.warning(
            "interactive message with %s buttons, keeping first %s", len(pairs), MAX_BUTTONS
        )
        pairs = pairs[:MAX_BUTTONS]

    reply_buttons = []
    for button_id, title in pairs:
        if len(title) > MAX_BUTTON_TITLE:
            logger.warning("button title truncated: %s", title)
        reply_buttons.append(ReplyButton(id=button_id, title=_truncate(title, MAX_BUTTON_TITLE)))

    return OutboundMessage(
        to=to,
        kind=INTERACTIVE_BUTTONS,
        text=_truncate(body, MAX_BODY),
        buttons=reply_buttons,
        header=_truncate(header, MAX_HEADER) if header else None,
        footer=_truncate(footer, MAX_FOOTER) if footer else None,
    )


def to_cloud_interactive(message: OutboundMessage) -> dict[str, Any]:
    interactive: dict[str, Any] = {
        "type": "button",
        "body": {"text": message.text},
        "action": {
            "buttons": [
                {"type": "reply", "reply": {"id": button.id, "title": button.title}}
                for button in message.buttons
            ]
        },
    }
    if message.header:
        interactive["header"] = {"type": "text", "text": message.header}
    if message.footer:
        interactive["footer"] = {"text": message.footer}
    return interactive
