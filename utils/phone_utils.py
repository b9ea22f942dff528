"""
utils/phone_utils.py

Purpose: Phone number normalization

- Strips provider channel prefixes (whatsapp:, sms:)
- Normalizes to E.164 (US default country code)
- Masks numbers for logs
"""

import re
from typing import Optional

CHANNEL_PREFIXES = ("whatsapp:", "sms:", "tel:")
DEFAULT_COUNTRY_CODE = "1"

_NON_DIGITS = re.compile(r"\D")


def strip_channel_prefix(phone: str) -> str:
    """
    Removes a provider channel prefix such as "whatsapp:".
    """
    value = phone.strip()
    lowered = value.lower()
    for prefix in CHANNEL_PREFIXES:
        if lowered.startswith(prefix):
            return value[len(prefix):].strip()
    return value


def normalize_phone(phone: Optional[str], default_country_code: str = DEFAULT_COUNTRY_CODE) -> Optional[str]:
    """
    Normalizes a phone number to E.164.

    Examples:
        "whatsapp:+1 (303) 555-0100" -> "+13035550100"
        "303-555-0100"               -> "+13035550100"
        "13035550100"                -> "+13035550100"
        "+447700900123"              -> "+447700900123"

    Returns:
        E.164 string, or None if the input has too few digits
    """
    if not phone:
        return None

    value = strip_channel_prefix(phone)
    has_plus = value.startswith("+")
    digits = _NON_DIGITS.sub("", value)

    if len(digits) < 10 or len(digits) > 15:
        return None

    if has_plus:
        return f"+{digits}"

    if len(digits) == 10:
        return f"+{default_country_code}{digits}"

    if len(digits) == 11 and digits.startswith(default_country_code):
        return f"+{digits}"

    return f"+{digits}"


def mask_phone(phone: Optional[str]) -> str:
    """
    Masks all but the last four digits, for log lines.
    """
    if not phone:
        return "unknown"
    digits = _NON_DIGITS.sub("", phone)
    if len(digits) <= 4:
        return "***"
    return f"***{digits[-4:]}"
