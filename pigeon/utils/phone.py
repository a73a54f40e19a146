"""Phone number normalization and inbound SMS text cleanup."""

import re

_NON_DIGITS = re.compile(r"\D")
_LINE_BREAKS = re.compile(r"[\r\n]+")
_NON_PRINTABLE = re.compile(r"[^\x20-\x7e]")


def normalize_phone(raw: str) -> str:
    """
    Reduce a phone number to the key used for sessions, accounts and rate limits.

    Keeps digits only. An 11-digit number starting with the North American
    country code 1 is folded to its 10-digit national form, so "+1 (991) 234-5678"
    and "9912345678" share a key. Falls back to the raw string if no digits remain.
    """
    digits = _NON_DIGITS.sub("", raw or "")
    if len(digits) == 11 and digits.startswith("1"):
        digits = digits[1:]
    return digits or raw


def sanitize_sms_text(raw: str) -> str:
    """
    Clean text received from an SMS gateway.

    Hardware modems pad messages with control characters and trailing lines,
    so only the first non-empty line is kept, restricted to printable ASCII
    and trimmed.
    """
    for line in _LINE_BREAKS.split(raw or ""):
        cleaned = _NON_PRINTABLE.sub("", line).strip()
        if cleaned:
            return cleaned
    return ""
