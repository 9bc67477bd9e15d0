from __future__ import annotations

import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

from comanda.schemas.conversation import DEFAULT_CONTACT_NAME
from comanda.services.text import contains_phrase, first_int, normalize

_ORDER_PATTERN = re.compile(r"\bcomanda\s*(?:n|numero|no)?\s*(\d+)\b")
_PERCENT_PATTERN = re.compile(r"(\d+(?:[.,]\d+)?)")
_WAID_PATTERN = re.compile(r"waid=(\d+)", re.IGNORECASE)
_TEL_PATTERN = re.compile(r"^(?:item\d+\.)?TEL[^:]*:(.+)$", re.IGNORECASE | re.MULTILINE)
_FN_PATTERN = re.compile(r"^FN[^:]*:(.*)$", re.IGNORECASE | re.MULTILINE)

PAY_ORDER_PHRASES = ("pagar a comanda", "pagar comanda", "pagar minha comanda", "pagar da comanda")

AFFIRMATIVE = (
    "sim",
    "s",
    "claro",
    "com certeza",
    "isso",
    "isso mesmo",
    "correto",
    "correta",
    "certo",
    "certa",
    "ok",
    "okay",
    "pode ser",
    "confirmo",
    "confirmado",
    "perfeito",
    "beleza",
    "quero",
    "yes",
)
NEGATIVE = (
    "nao",
    "n",
    "negativo",
    "errado",
    "errada",
    "incorreto",
    "incorreta",
    "nao quero",
    "n quero",
    "nunca",
)

NO_TIP = ("nao", "n", "nao quero", "n quero", "sem gorjeta", "nenhuma", "nenhum", "zero", "agora nao")
FEE_OBJECTION = (
    "ja temos a taxa",
    "ja tem a taxa",
    "ja tem taxa",
    "ja paguei a taxa",
    "ja pago a taxa",
    "ja tem os 10",
    "ja tem 10",
    "taxa de servico",
    "ja tem servico",
)

REMINDER_HELP = ("ajuda", "preciso de ajuda", "atendente", "socorro", "help", "problema")
REMINDER_PAYING = ("pagando", "estou pagando", "to pagando", "vou pagar", "ja vou pagar", "aguarde", "ja estou", "fazendo")
REMINDER_CONVENTIONAL = (
    "convencional",
    "pagamento convencional",
    "maquininha",
    "cartao",
    "dinheiro",
    "na mesa",
    "no caixa",
    "desisti",
    "nao quero",
)

EXCESS_TIP = ("gorjeta", "pode ficar", "fica de gorjeta", "deixa", "deixar", "pode deixar", "considerar como gorjeta")
EXCESS_REFUND = ("estorno", "estornar", "reembolso", "devolver", "devolucao", "de volta", "reembolsar")

REMAINING_HELP = ("ajuda", "assistencia", "atendente", "ajudar", "problema")
REMAINING_PAY = ("pagar", "pagar restante", "pagar o restante", "restante", "vou pagar", "pago", "sim")

PROOF_WORDS = ("comprovante", "comprovantes", "recibo", "transferencia")

TIP_BUTTONS = {"tip_0": 0, "tip_3": 3, "tip_5": 5, "tip_7": 7}


@dataclass
class ContactCard:
    name: str
    phone: str


def extract_order_id(text: str) -> str | None:
    """Número da comanda em frases como 'gostaria de pagar a comanda 12'."""
    match = _ORDER_PATTERN.search(normalize(text))
    return match.group(1) if match else None


def is_pay_order_request(text: str) -> bool:
    """Frase de início: 'pagar a comanda', com ou sem número."""
    return contains_phrase(text, PAY_ORDER_PHRASES)


def parse_yes_no(text: str) -> bool | None:
    """True para afirmativo, False para negativo e None se não entendeu.

    O conjunto negativo é testado primeiro: 'não está correta' é negativo.
    """
    if contains_phrase(text, NEGATIVE):
        return False
    if contains_phrase(text, AFFIRMATIVE):
        return True
    return None


def parse_people_count(text: str) -> int | None:
    value = first_int(text)
    if value is None or value < 2:
        return None
    return value


def is_fee_objection(text: str) -> bool:
    return contains_phrase(text, FEE_OBJECTION)


def parse_tip(text: str, reply_id: str | None = None) -> Decimal | None:
    """Percentual de gorjeta escolhido; Decimal(0) para 'sem gorjeta' e None se inválido."""
    if reply_id in TIP_BUTTONS:
        return Decimal(TIP_BUTTONS[reply_id])
    if contains_phrase(text, NO_TIP):
        return Decimal(0)

    match = _PERCENT_PATTERN.search(text or "")
    if not match:
        return None
    try:
        percent = Decimal(match.group(1).replace(",", "."))
    except InvalidOperation:
        return None
    if percent == 0:
        return Decimal(0)
    if percent < 0 or percent > 100:
        return None
    return percent


def parse_score(text: str) -> int | None:
    value = first_int(text)
    if value is None or not 0 <= value <= 10:
        return None
    return value


def parse_reminder_choice(text: str, reply_id: str | None = None) -> str | None:
    if reply_id in {"reminder_help", "reminder_paying", "reminder_conventional"}:
        return reply_id.split("_", 1)[1]
    if contains_phrase(text, REMINDER_HELP):
        return "help"
    if contains_phrase(text, REMINDER_CONVENTIONAL):
        return "conventional"
    if contains_phrase(text, REMINDER_PAYING):
        return "paying"
    return None


def parse_excess_choice(text: str, reply_id: str | None = None) -> str | None:
    if reply_id in {"excess_tip", "excess_refund"}:
        return reply_id.split("_", 1)[1]
    if contains_phrase(text, EXCESS_REFUND):
        return "refund"
    if contains_phrase(text, EXCESS_TIP):
        return "tip"
    return None


def parse_remaining_choice(text: str, reply_id: str | None = None) -> str | None:
    if reply_id in {"remaining_pay", "remaining_help"}:
        return reply_id.split("_", 1)[1]
    if contains_phrase(text, REMAINING_HELP):
        return "help"
    if contains_phrase(text, REMAINING_PAY):
        return "pay"
    return None


def mentions_proof(text: str) -> bool:
    return contains_phrase(text, PROOF_WORDS)


def _card_phone(card: str) -> str:
    waid = _WAID_PATTERN.search(card)
    if waid:
        return waid.group(1)
    tel = _TEL_PATTERN.search(card)
    if tel:
        return re.sub(r"\D", "", tel.group(1))
    return ""


def parse_vcards(raw: str) -> list[ContactCard]:
    """Extrai nome e telefone de um ou mais vCards concatenados.

    Cartões sem telefone são ignorados; sem FN o nome fica como
    'Nome não informado'.
    """
    contacts = []
    for chunk in (raw or "").split("END:VCARD"):
        if "BEGIN:VCARD" not in chunk:
            continue
        phone = _card_phone(chunk)
        if not phone:
            continue
        name_match = _FN_PATTERN.search(chunk)
        name = name_match.group(1).strip() if name_match else ""
        contacts.append(ContactCard(name=name or DEFAULT_CONTACT_NAME, phone=phone))
    return contacts
