import re
import unicodedata
from typing import Iterable


def normalize(text: str) -> str:
    text = (text or "").lower()
    text = unicodedata.normalize("NFKD", text)
    text = "".join(char for char in text if not unicodedata.combining(char))
    text = re.sub(r"[-_]", " ", text)
    text = re.sub(r"[^\w\s]", " ", text)
    text = re.sub(r"\s+", " ", text).strip()
    return text


def contains_phrase(text: str, phrases: Iterable[str]) -> bool:
    """Verifica se alguma frase aparece como palavra(s) inteira(s) no texto normalizado."""
    normalized = normalize(text)
    if not normalized:
        return False
    padded = f" {normalized} "
    for phrase in phrases:
        candidate = normalize(phrase)
        if candidate and f" {candidate} " in padded:
            return True
    return False


def first_int(text: str) -> int | None:
    match = re.search(r"\d+", text or "")
    return int(match.group(0)) if match else None
