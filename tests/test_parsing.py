from decimal import Decimal

from comanda.fsm.parsing import (
    extract_order_id,
    is_fee_objection,
    is_pay_order_request,
    mentions_proof,
    parse_excess_choice,
    parse_people_count,
    parse_remaining_choice,
    parse_reminder_choice,
    parse_score,
    parse_tip,
    parse_vcards,
    parse_yes_no,
)
from comanda.schemas.conversation import DEFAULT_CONTACT_NAME
from tests.fixtures_data import (
    JOAO_PHONE,
    MARIA_PHONE,
    VCARD_JOAO_WITHOUT_NAME,
    VCARD_MARIA,
    VCARD_WITHOUT_PHONE,
)


def test_extract_order_id_from_start_phrases():
    assert extract_order_id("Gostaria de pagar a comanda 12") == "12"
    assert extract_order_id("Quero pagar a Comanda número 45") == "45"
    assert extract_order_id("pagar a comanda") is None


def test_is_pay_order_request_requires_the_phrase():
    assert is_pay_order_request("Olá, quero pagar a comanda 3")
    assert is_pay_order_request("PAGAR COMANDA 3")
    assert not is_pay_order_request("oi, tudo bem?")
    assert not is_pay_order_request("comanda 3")


def test_parse_yes_no_checks_negative_first():
    assert parse_yes_no("Sim") is True
    assert parse_yes_no("ok, pode ser") is True
    assert parse_yes_no("Não") is False
    assert parse_yes_no("não está correta") is False
    assert parse_yes_no("talvez") is None
    assert parse_yes_no("") is None


def test_parse_people_count_requires_at_least_two():
    assert parse_people_count("3 pessoas") == 3
    assert parse_people_count("somos 10") == 10
    assert parse_people_count("1") is None
    assert parse_people_count("três") is None


def test_parse_tip_accepts_buttons_text_and_refusals():
    assert parse_tip("", "tip_7") == Decimal(7)
    assert parse_tip("5%") == Decimal(5)
    assert parse_tip("quero dar 2,5%") == Decimal("2.5")
    assert parse_tip("sem gorjeta") == Decimal(0)
    assert parse_tip("Não") == Decimal(0)
    assert parse_tip("0") == Decimal(0)


def test_parse_tip_rejects_out_of_range_and_noise():
    assert parse_tip("150%") is None
    assert parse_tip("o que?") is None


def test_fee_objection_detection():
    assert is_fee_objection("Já temos a taxa de serviço")
    assert is_fee_objection("ja tem os 10%")
    assert not is_fee_objection("5%")


def test_parse_score_range():
    assert parse_score("Nota 8") == 8
    assert parse_score("10") == 10
    assert parse_score("0") == 0
    assert parse_score("11") is None
    assert parse_score("ótimo") is None


def test_reminder_choice_from_buttons_and_text():
    assert parse_reminder_choice("", "reminder_help") == "help"
    assert parse_reminder_choice("Estou pagando") == "paying"
    assert parse_reminder_choice("vou pagar na mesa") == "conventional"
    assert parse_reminder_choice("preciso de ajuda") == "help"
    assert parse_reminder_choice("hmm") is None


def test_excess_and_remaining_choices():
    assert parse_excess_choice("", "excess_refund") == "refund"
    assert parse_excess_choice("quero o estorno") == "refund"
    assert parse_excess_choice("pode ficar de gorjeta") == "tip"
    assert parse_excess_choice("sei lá") is None

    assert parse_remaining_choice("", "remaining_pay") == "pay"
    assert parse_remaining_choice("vou pagar o restante") == "pay"
    assert parse_remaining_choice("preciso de um atendente") == "help"
    assert parse_remaining_choice("???") is None


def test_mentions_proof():
    assert mentions_proof("já mandei o comprovante")
    assert not mentions_proof("já paguei")


def test_parse_vcards_reads_waid_tel_and_skips_cards_without_phone():
    raw = "\n".join([VCARD_MARIA, VCARD_JOAO_WITHOUT_NAME, VCARD_WITHOUT_PHONE])

    contacts = parse_vcards(raw)

    assert [(contact.name, contact.phone) for contact in contacts] == [
        ("Maria Souza", MARIA_PHONE),
        (DEFAULT_CONTACT_NAME, JOAO_PHONE),
    ]


def test_parse_vcards_ignores_plain_text():
    assert parse_vcards("nenhum contato aqui") == []
