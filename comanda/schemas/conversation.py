from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator

from comanda.fsm.states import ConversationStep
from comanda.services.money import ZERO, parse_brl_amount, round_money

DEFAULT_CONTACT_NAME = "Nome não informado"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OrderItem(BaseModel):
    name: str
    quantity: int = 1
    unit_price: Decimal = ZERO
    total: Decimal = ZERO


class OrderDetails(BaseModel):
    table_id: str
    message: str = ""
    items: list[OrderItem] = Field(default_factory=list)
    total: Decimal
    discount: Decimal = ZERO

    @field_validator("total", "discount", mode="before")
    @classmethod
    def _round(cls, value: Any) -> Decimal:
        return round_money(value or 0)


class Participant(BaseModel):
    name: str = DEFAULT_CONTACT_NAME
    phone: str
    expected_amount: Decimal = ZERO
    paid_amount: Decimal = ZERO

    @property
    def remaining(self) -> Decimal:
        return max(ZERO, self.expected_amount - self.paid_amount)

    @property
    def is_paid(self) -> bool:
        return self.paid_amount >= self.expected_amount


class SplitInfo(BaseModel):
    number_of_people: int = Field(..., ge=2)
    participants: list[Participant] = Field(default_factory=list)
    finalized: bool = False

    @property
    def contacts_expected(self) -> int:
        # quem iniciou a divisão já conta como uma das pessoas
        return self.number_of_people - 1


_EXTRACTION_KEYS = {
    "nome_pagador": "payer_name",
    "cpf_cnpj_pagador": "payer_document",
    "instiuicao_bancaria": "payer_bank",
    "instituicao_bancaria": "payer_bank",
    "valor": "amount",
    "data_pagamento": "payment_datetime",
    "nome_beneficiario": "beneficiary_name",
    "cpf_cnpj_beneficiario": "beneficiary_document",
    "instiuicao_bancaria_beneficiario": "beneficiary_bank",
    "instituicao_bancaria_beneficiario": "beneficiary_bank",
    "id_transacao": "external_transaction_id",
}


class PaymentProofRecord(BaseModel):
    payer_name: str | None = None
    payer_document: str | None = None
    payer_bank: str | None = None
    amount: Decimal
    payment_datetime: str | None = None
    beneficiary_name: str | None = None
    beneficiary_document: str | None = None
    beneficiary_bank: str | None = None
    external_transaction_id: str = Field(..., min_length=1)
    received_at: datetime = Field(default_factory=utcnow)

    model_config = {"frozen": True}

    @field_validator("amount", mode="before")
    @classmethod
    def _parse_amount(cls, value: Any) -> Decimal:
        return parse_brl_amount(value)

    @classmethod
    def from_extraction(cls, payload: dict[str, Any]) -> "PaymentProofRecord":
        """Aceita tanto as chaves em português do extrator quanto os nomes do modelo."""
        data = {}
        for key, value in payload.items():
            data[_EXTRACTION_KEYS.get(key, key)] = value
        return cls.model_validate(data)


class Feedback(BaseModel):
    score: int = Field(..., ge=0, le=10)
    detail: str | None = None


class ConversationState(BaseModel):
    user_id: str
    current_step: ConversationStep = ConversationStep.INITIAL
    order_id: str | None = None
    order_details: OrderDetails | None = None
    split_info: SplitInfo | None = None
    user_amount: Decimal | None = None
    tip_amount: Decimal | None = None
    tip_percent: Decimal | None = None
    payment_proofs: list[PaymentProofRecord] = Field(default_factory=list)
    payment_start_time: datetime | None = None
    excess_payment_amount: Decimal | None = None
    feedback: Feedback | None = None
    referrer_user_id: str | None = None
    # grupo que está pagando a comanda nesta rodada; convidados herdam do originador
    session_id: str = Field(default_factory=lambda: uuid4().hex)
    taken_over_from: str | None = None
    # lembrete de inatividade já enviado neste passo
    reminder_sent_at: datetime | None = None
    created_at: datetime = Field(default_factory=utcnow)
    last_activity_at: datetime = Field(default_factory=utcnow)

    @property
    def total_paid(self) -> Decimal:
        return sum((proof.amount for proof in self.payment_proofs), ZERO)

    def has_transaction(self, external_transaction_id: str) -> bool:
        return any(
            proof.external_transaction_id == external_transaction_id for proof in self.payment_proofs
        )

    def to_json(self) -> str:
        return self.model_dump_json()

    @classmethod
    def from_json(cls, raw: str) -> "ConversationState":
        return cls.model_validate_json(raw)
