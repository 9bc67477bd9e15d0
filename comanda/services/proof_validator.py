from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Iterable

from comanda.core.config import EXPECTED_BENEFICIARY_DOCUMENT, EXPECTED_BENEFICIARY_NAME
from comanda.schemas.conversation import PaymentProofRecord
from comanda.services.money import ZERO, round_money
from comanda.services.text import normalize


class ProofOutcome(str, Enum):
    CONFIRMED = "confirmed"
    OVERPAID = "overpaid"
    UNDERPAID = "underpaid"
    DUPLICATE = "duplicate"
    INVALID_BENEFICIARY = "invalid_beneficiary"
    INVALID_AMOUNT = "invalid_amount"


@dataclass(frozen=True)
class ExpectedBeneficiary:
    name: str = EXPECTED_BENEFICIARY_NAME
    document: str = EXPECTED_BENEFICIARY_DOCUMENT


@dataclass(frozen=True)
class ProofValidation:
    outcome: ProofOutcome
    amount: Decimal
    excess: Decimal | None = None
    remaining: Decimal | None = None

    @property
    def accepted(self) -> bool:
        return self.outcome in {ProofOutcome.CONFIRMED, ProofOutcome.OVERPAID, ProofOutcome.UNDERPAID}


def beneficiary_matches(proof: PaymentProofRecord, expected: ExpectedBeneficiary) -> bool:
    expected_name = normalize(expected.name).upper()
    name = normalize(proof.beneficiary_name or "").upper()
    if expected_name and expected_name in name:
        return True
    document = (proof.beneficiary_document or "").strip()
    return bool(document) and document == expected.document.strip()


def validate_proof(
    proof: PaymentProofRecord,
    *,
    user_amount: Decimal,
    accepted_proofs: Iterable[PaymentProofRecord],
    expected: ExpectedBeneficiary | None = None,
) -> ProofValidation:
    expected = expected or ExpectedBeneficiary()
    amount = round_money(proof.amount)

    if any(item.external_transaction_id == proof.external_transaction_id for item in accepted_proofs):
        return ProofValidation(ProofOutcome.DUPLICATE, amount)

    if amount <= ZERO:
        return ProofValidation(ProofOutcome.INVALID_AMOUNT, amount)

    if not beneficiary_matches(proof, expected):
        return ProofValidation(ProofOutcome.INVALID_BENEFICIARY, amount)

    owed = round_money(user_amount)
    if amount == owed:
        return ProofValidation(ProofOutcome.CONFIRMED, amount)
    if amount > owed:
        return ProofValidation(ProofOutcome.OVERPAID, amount, excess=round_money(amount - owed))
    return ProofValidation(ProofOutcome.UNDERPAID, amount, remaining=round_money(owed - amount))
