from __future__ import annotations

import logging
from decimal import Decimal
from enum import Enum
from typing import Protocol

from comanda.core.config import BRAND_NAME, OPERATOR_GROUP_ID, REFUND_GROUP_ID, WAITER_GROUP_ID
from comanda.services.ledger import OrderLedgerEntry
from comanda.services.money import ZERO, format_brl, round_money
from comanda.whatsapp.base import text_message

logger = logging.getLogger(__name__)


class GroupTopic(str, Enum):
    WAITER = "waiter"
    OPERATOR = "operator"
    REFUND = "refund"


class AttendantChannel(Protocol):
    async def notify(self, topic: GroupTopic, text: str) -> None:
        ...


class WhatsAppGroupChannel:
    """Entrega os avisos nos grupos de WhatsApp da equipe."""

    def __init__(self, sender, groups: dict[GroupTopic, str] | None = None) -> None:
        self._sender = sender
        self._groups = groups or {
            GroupTopic.WAITER: WAITER_GROUP_ID,
            GroupTopic.OPERATOR: OPERATOR_GROUP_ID,
            GroupTopic.REFUND: REFUND_GROUP_ID or WAITER_GROUP_ID,
        }

    async def notify(self, topic: GroupTopic, text: str) -> None:
        group_id = self._groups.get(topic)
        if not group_id:
            logger.warning("no group configured for topic %s, notice dropped", topic.value)
            return
        result = await self._sender.send(text_message(group_id, text))
        if result.status == "failed":
            raise RuntimeError(f"Falha ao avisar o grupo {topic.value}: {result.error}")


class AttendantNotifier:
    """Avisos para a equipe sem bloquear o fluxo do cliente.

    Qualquer erro do canal é logado e descartado.
    """

    def __init__(self, channel: AttendantChannel) -> None:
        self._channel = channel

    async def notify(self, topic: GroupTopic, text: str) -> None:
        try:
            await self._channel.notify(topic, text)
        except Exception:
            logger.exception("attendant notification failed for %s", topic.value)


def _header(table_id: str) -> str:
    return f"*👋 {BRAND_NAME}* - STATUS Mesa {table_id}\n\n"


def payment_summary(table_id: str, entry: OrderLedgerEntry, payer_id: str, user_amount: Decimal) -> str:
    if not entry.is_split:
        paid = entry.paid_by(payer_id)
        remaining = round_money(user_amount - paid)
        message = _header(table_id)
        message += "Divisão de pagamento: Não\n"
        message += f"Deveria pagar: {format_brl(user_amount)}\n"
        message += f"Pagou: {format_brl(paid)}"
        if remaining > ZERO:
            message += f"\nRestante: {format_brl(remaining)}"
        elif remaining < ZERO:
            message += f"\nExcedente: {format_brl(-remaining)}"
        return message

    split_info = entry.split_info
    people = split_info.number_of_people
    message = _header(table_id)
    message += f"Total: {format_brl(entry.total)}\n\n"
    message += f"👥 Divisão entre {people} pessoa{'s' if people > 1 else ''}:\n\n"
    for participant in split_info.participants:
        name = participant.name or "Cliente"
        if participant.is_paid:
            message += f"*{name} - Pago 🟢*\n\n"
        else:
            message += (
                f"*{name} - Pendente 🟡*\n"
                f"Deveria pagar: {format_brl(participant.expected_amount)}\n"
                f"Restante: {format_brl(participant.remaining)}\n\n"
            )
    return message.rstrip()


def table_started_payment(table_id: str) -> str:
    return f"👋 *{BRAND_NAME}* - A mesa {table_id} iniciou o processo de pagamentos."


def wrong_order(table_id: str) -> str:
    return (
        f"👋 *{BRAND_NAME}* - A Mesa {table_id} relatou um problema com os pedidos da comanda.\n\n"
        "Por favor, dirija-se à mesa para verificar."
    )


def refund_request(table_id: str, amount: Decimal) -> str:
    return f"👋 *{BRAND_NAME}* - A mesa {table_id} solicitou um estorno de *{format_brl(amount)}*."


def assistance_request(table_id: str, reason: str) -> str:
    return f"👋 *{BRAND_NAME}* - A mesa {table_id} precisa de ajuda com o pagamento.\n\nMotivo: {reason}"


def invalid_beneficiary(table_id: str, beneficiary: str | None, amount: Decimal) -> str:
    return (
        f"⚠️ *{BRAND_NAME}* - A mesa {table_id} enviou um comprovante de {format_brl(amount)} "
        f"para outro favorecido ({beneficiary or 'não identificado'}). Verifique com o cliente."
    )


def invalid_amount(table_id: str, amount: Decimal) -> str:
    return (
        f"⚠️ *{BRAND_NAME}* - A mesa {table_id} enviou um comprovante com valor {format_brl(amount)}. "
        "Confira o pagamento com o cliente."
    )


def order_settled(table_id: str, total: Decimal) -> str:
    return f"✅ *{BRAND_NAME}* - A comanda da mesa {table_id} foi totalmente paga ({format_brl(total)})."


def authentication_error() -> str:
    return (
        f"❌ *{BRAND_NAME}* - *Erro de Autenticação*\n\n"
        "Não foi possível conectar ao PDV. Por favor, gere uma nova credencial para continuar a automação."
    )


def prebill_error(table_id: str) -> str:
    return (
        f"❌ *{BRAND_NAME}* - *Erro na Pré-fatura*\n\n"
        f"Houve um problema ao gerar a pré-fatura da comanda {table_id}. "
        "Por favor, verifique os detalhes ou entre em contato com o suporte."
    )


def finish_payment_error(table_id: str) -> str:
    return (
        f"❌ *{BRAND_NAME}* - *Erro no Pagamento*\n\n"
        f"Não foi possível finalizar o pagamento da comanda {table_id}. "
        "Por favor, tente novamente ou entre em contato com o suporte."
    )


def order_processing_error(table_id: str) -> str:
    return (
        f"❌ *{BRAND_NAME}* - *Erro no Processamento*\n\n"
        f"Ocorreu um erro ao processar a comanda {table_id}. Por favor, realize o pagamento manualmente."
    )


def proof_processing_error(table_id: str) -> str:
    return (
        f"❌ *{BRAND_NAME}* - *Erro no Comprovante*\n\n"
        f"Não foi possível ler o comprovante enviado pela mesa {table_id}. Verifique o serviço de extração."
    )
