"""MSISDN normalization and redaction."""

import re

from stk_gateway.core.exceptions import ValidationError

COUNTRY_CODE = "254"

_NON_DIGITS = re.compile(r"\D")


def normalize_phone_number(phone: str) -> str:
    """
    Convert a Kenyan mobile number to the gateway's 254XXXXXXXXX form.

    Accepts:
        712345678      -> 254712345678
        0712345678     -> 254712345678
        254712345678   -> 254712345678

    Non-digit characters (spaces, '+', '-') are stripped first.

    Raises:
        ValidationError: For any other shape
    """
    cleaned = _NON_DIGITS.sub("", phone or "")
    if len(cleaned) == 9:
        return COUNTRY_CODE + cleaned
    if len(cleaned) == 10 and cleaned.startswith("0"):
        return COUNTRY_CODE + cleaned[1:]
    if len(cleaned) == 12 and cleaned.startswith(COUNTRY_CODE):
        return cleaned
    raise ValidationError("invalid phone number format")


def mask_phone_number(phone: str) -> str:
    """Keep the first 6 and last 2 digits, e.g. 254712****78."""
    try:
        formatted = normalize_phone_number(phone)
    except ValidationError:
        return "****"
    return f"{formatted[:6]}****{formatted[-2:]}"
