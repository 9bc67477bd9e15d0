from __future__ import annotations

import re
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

CENT = Decimal("0.01")
ZERO = Decimal("0.00")

_AMOUNT_CHARS = re.compile(r"[^\d,.\-]")


def to_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        # float passa por str para não carregar o erro binário
        return Decimal(repr(value))
    try:
        return Decimal(str(value).strip())
    except InvalidOperation as exc:
        raise ValueError(f"Valor monetário inválido: {value!r}") from exc


def round_money(value) -> Decimal:
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def compute_share(total, number_of_people: int) -> Decimal:
    """Parte igual de cada pessoa, arredondada a 2 casas.

    O resto do arredondamento não é redistribuído: 121,00 / 3 dá 40,33 para
    todos e a soma fica em 120,99.
    """
    if number_of_people < 1:
        raise ValueError("number_of_people deve ser >= 1")
    return round_money(to_decimal(total) / Decimal(number_of_people))


def apply_tip(amount, percent) -> Decimal:
    factor = Decimal(1) + to_decimal(percent) / Decimal(100)
    return round_money(to_decimal(amount) * factor)


def format_brl(value) -> str:
    amount = round_money(value)
    return f"R$ {amount:,.2f}".replace(",", "X").replace(".", ",").replace("X", ".")


def parse_brl_amount(text) -> Decimal:
    """Converte '1.234,56', 'R$ 40,33' ou '40.33' em Decimal."""
    if isinstance(text, (int, float, Decimal)):
        return round_money(text)
    cleaned = _AMOUNT_CHARS.sub("", str(text or ""))
    if not cleaned:
        raise ValueError(f"Valor monetário inválido: {text!r}")
    if "," in cleaned:
        cleaned = cleaned.replace(".", "").replace(",", ".")
    elif cleaned.count(".") > 1:
        cleaned = cleaned.replace(".", "")
    return round_money(cleaned)
