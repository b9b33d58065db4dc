import re
from typing import Optional

PHONE_PATTERN = re.compile(r"^01[3-9]\d{8}$")
PHONE_IN_TEXT_PATTERN = re.compile(r"(?:\+?88)?0?1[3-9](?:[\s-]?\d){8}")
NAME_PATTERN = re.compile(r"^[A-Za-zঀ-৿][A-Za-zঀ-৿ .'-]{1,49}$")
TWO_DIGITS_PATTERN = re.compile(r"^\d{2}$")
MIN_ADDRESS_LENGTH = 10

_NOT_A_NAME = {
    "yes", "no", "ok", "okay", "hi", "hello", "thanks", "thank you", "price", "delivery", "cancel", "help",
}


def normalize_phone(raw: Optional[str]) -> Optional[str]:
    """Return the local 11-digit form (01XXXXXXXXX) or None if it is not a phone."""
    if not raw:
        return None
    digits = re.sub(r"[\s\-().]", "", raw.strip())
    if digits.startswith("+"):
        digits = digits[1:]
    if not digits.isdigit():
        return None
    if digits.startswith("880"):
        digits = "0" + digits[3:]
    return digits if PHONE_PATTERN.match(digits) else None


def is_valid_phone(raw: Optional[str]) -> bool:
    return normalize_phone(raw) is not None


def looks_like_phone_attempt(text: str) -> bool:
    """Mostly digits, so the customer was probably trying to type a number."""
    compact = re.sub(r"[\s\-+().]", "", text or "")
    return len(compact) >= 6 and compact.isdigit()


def find_phone(text: str) -> Optional[str]:
    match = PHONE_IN_TEXT_PATTERN.search(text or "")
    return normalize_phone(match.group(0)) if match else None


def is_plausible_name(text: str) -> bool:
    cleaned = (text or "").strip()
    if not NAME_PATTERN.match(cleaned):
        return False
    if cleaned.lower() in _NOT_A_NAME:
        return False
    return len(cleaned.split()) <= 5


def is_complete_address(text: Optional[str]) -> bool:
    return bool(text) and len(text.strip()) >= MIN_ADDRESS_LENGTH


def is_payment_digits(text: str) -> bool:
    return bool(TWO_DIGITS_PATTERN.match((text or "").strip()))
