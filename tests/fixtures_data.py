"""Conjunto de dados reutilizável para cenários de teste backend."""

ORIGINATOR_PHONE = "5511999990000"
MARIA_PHONE = "5511988887777"
JOAO_PHONE = "5521977776666"

WEBHOOK_TIMESTAMP = 1760616000

BENEFICIARY = {
    "name": "EMPORIO CRISTOVAO",
    "document": "42.081.641/0001-68",
}


def proof_payload(amount: str, transaction_id: str, beneficiary: str = "EMPORIO CRISTOVAO LTDA") -> dict:
    """Campos no formato devolvido pelo serviço de extração."""
    return {
        "nome_pagador": "Cliente Teste",
        "cpf_cnpj_pagador": "123.456.789-00",
        "instiuicao_bancaria": "Banco Exemplo",
        "valor": amount,
        "data_pagamento": "16/10/2026 12:05",
        "nome_beneficiario": beneficiary,
        "cpf_cnpj_beneficiario": "42.081.641/0001-68",
        "instiuicao_bancaria_beneficiario": "Banco Exemplo",
        "id_transacao": transaction_id,
    }


VCARD_MARIA = (
    "BEGIN:VCARD\n"
    "VERSION:3.0\n"
    "FN:Maria Souza\n"
    f"TEL;type=CELL;waid={MARIA_PHONE}:+55 11 98888-7777\n"
    "END:VCARD"
)

VCARD_JOAO_WITHOUT_NAME = (
    "BEGIN:VCARD\n"
    "VERSION:3.0\n"
    "item1.TEL:+55 (21) 97777-6666\n"
    "END:VCARD"
)

VCARD_WITHOUT_PHONE = (
    "BEGIN:VCARD\n"
    "VERSION:3.0\n"
    "FN:Sem Telefone\n"
    "END:VCARD"
)


def _cloud_payload(message: dict, profile_name: str = "Cliente Teste") -> dict:
    return {
        "object": "whatsapp_business_account",
        "entry": [
            {
                "id": "WABA_ID",
                "changes": [
                    {
                        "field": "messages",
                        "value": {
                            "messaging_product": "whatsapp",
                            "metadata": {"display_phone_number": "551130000000", "phone_number_id": "PHONE_ID"},
                            "contacts": [{"profile": {"name": profile_name}, "wa_id": message["from"]}],
                            "messages": [message],
                        },
                    }
                ],
            }
        ],
    }


CLOUD_TEXT_PAYLOAD = _cloud_payload(
    {
        "from": ORIGINATOR_PHONE,
        "id": "wamid.TEXT1",
        "timestamp": str(WEBHOOK_TIMESTAMP),
        "type": "text",
        "text": {"body": "Gostaria de pagar a comanda 12"},
    }
)

CLOUD_BUTTON_REPLY_PAYLOAD = _cloud_payload(
    {
        "from": ORIGINATOR_PHONE,
        "id": "wamid.REPLY1",
        "timestamp": str(WEBHOOK_TIMESTAMP),
        "type": "interactive",
        "interactive": {"type": "button_reply", "button_reply": {"id": "tip_5", "title": "5% 🔥"}},
    }
)

CLOUD_IMAGE_PAYLOAD = _cloud_payload(
    {
        "from": ORIGINATOR_PHONE,
        "id": "wamid.IMAGE1",
        "timestamp": str(WEBHOOK_TIMESTAMP),
        "type": "image",
        "image": {"id": "MEDIA_1", "mime_type": "image/jpeg", "caption": "segue o comprovante"},
    }
)

CLOUD_CONTACTS_PAYLOAD = _cloud_payload(
    {
        "from": ORIGINATOR_PHONE,
        "id": "wamid.CONTACTS1",
        "timestamp": str(WEBHOOK_TIMESTAMP),
        "type": "contacts",
        "contacts": [
            {
                "name": {"formatted_name": "Maria Souza", "first_name": "Maria"},
                "phones": [{"phone": "+55 11 98888-7777", "wa_id": MARIA_PHONE, "type": "CELL"}],
            }
        ],
    }
)

CLOUD_STATUS_PAYLOAD = {
    "object": "whatsapp_business_account",
    "entry": [
        {
            "id": "WABA_ID",
            "changes": [
                {
                    "field": "messages",
                    "value": {
                        "messaging_product": "whatsapp",
                        "statuses": [{"id": "wamid.OUT1", "status": "delivered", "recipient_id": ORIGINATOR_PHONE}],
                    },
                }
            ],
        }
    ],
}

POS_MESSAGE_RESPONSE = {
    "message": "(🍽️) Picanha\n1 un. x R$ 110,00 = R$ 110,00\n\n💳 Total Bruto: R$ 121,00",
    "details": {
        "orders": [
            {"nome": "Picanha", "quantidade": 1, "preco_unitario": "110.00", "valor_total": "110.00"},
            {"name": "Taxa de Serviço", "quantity": 1, "unit_price": 11},
        ],
        "total": "121.00",
        "discount": 0,
    },
}
