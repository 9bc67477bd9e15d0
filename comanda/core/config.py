import os
from dotenv import load_dotenv

# Carrega o .env da raiz do projeto
load_dotenv()


def _env_flag(name: str, default: str = "") -> bool:
    return os.getenv(name, default).strip().lower() in {
        "1",
        "true",
        "yes",
        "on",
    }


DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./comanda.db")
ENV = os.getenv("ENV", "dev")
ENV_NORMALIZED = ENV.lower()
IS_DEV = ENV_NORMALIZED in {"dev", "development", "local"}

# memory / sql
CONVERSATION_STORE = os.getenv("CONVERSATION_STORE", "memory").strip().lower()

# WhatsApp Cloud API
WHATSAPP_PROVIDER = os.getenv("WHATSAPP_PROVIDER", "mock").strip().lower()
META_WA_ACCESS_TOKEN = os.getenv("META_WA_ACCESS_TOKEN", "")
META_WA_PHONE_NUMBER_ID = os.getenv("META_WA_PHONE_NUMBER_ID", "")
META_WA_VERIFY_TOKEN = os.getenv("META_WA_VERIFY_TOKEN", "")
META_API_VERSION = os.getenv("META_API_VERSION", "v19.0")

# Grupos de atendimento (ids de chat)
WAITER_GROUP_ID = os.getenv("WAITER_GROUP_ID", "")
OPERATOR_GROUP_ID = os.getenv("OPERATOR_GROUP_ID", "")
REFUND_GROUP_ID = os.getenv("REFUND_GROUP_ID", "")

# PDV
ORDER_GATEWAY = os.getenv("ORDER_GATEWAY", "mock").strip().lower()
POS_BASE_URL = os.getenv("POS_BASE_URL", "").rstrip("/")
POS_TIMEOUT_SECONDS = float(os.getenv("POS_TIMEOUT_SECONDS", "20"))

# Extração de comprovantes
PROOF_EXTRACTOR = os.getenv("PROOF_EXTRACTOR", "mock").strip().lower()
EXTRACTION_API_URL = os.getenv("EXTRACTION_API_URL", "")
EXTRACTION_API_KEY = os.getenv("EXTRACTION_API_KEY", "")

# Estabelecimento
EXPECTED_BENEFICIARY_NAME = os.getenv("EXPECTED_BENEFICIARY_NAME", "EMPORIO CRISTOVAO")
EXPECTED_BENEFICIARY_DOCUMENT = os.getenv("EXPECTED_BENEFICIARY_DOCUMENT", "42.081.641/0001-68")
RESTAURANT_NAME = os.getenv("RESTAURANT_NAME", "Emporio Cristovão")
BRAND_NAME = os.getenv("BRAND_NAME", "Comanda Pay")
PIX_COPY_PASTE_KEY = os.getenv("PIX_COPY_PASTE_KEY", "")

# Tempos
MESSAGE_PACING_SECONDS = float(os.getenv("MESSAGE_PACING_SECONDS", "2.0"))
RETRY_MAX_ATTEMPTS = int(os.getenv("RETRY_MAX_ATTEMPTS", "5"))
RETRY_DELAY_SECONDS = float(os.getenv("RETRY_DELAY_SECONDS", "30"))
RETRY_DELAY_NOTICE_ATTEMPT = int(os.getenv("RETRY_DELAY_NOTICE_ATTEMPT", "3"))
ORDER_CLAIM_INACTIVITY_MINUTES = float(os.getenv("ORDER_CLAIM_INACTIVITY_MINUTES", "5"))
PAYMENT_REMINDER_MINUTES = float(os.getenv("PAYMENT_REMINDER_MINUTES", "5"))
ABANDON_AFTER_MINUTES = float(os.getenv("ABANDON_AFTER_MINUTES", "30"))
MAX_INBOUND_AGE_SECONDS = int(os.getenv("MAX_INBOUND_AGE_SECONDS", "30"))
INACTIVITY_SWEEP_SECONDS = float(os.getenv("INACTIVITY_SWEEP_SECONDS", "60"))

SIMULATOR_ENABLED = _env_flag("SIMULATOR_ENABLED", "1" if IS_DEV else "")
