"""Phone number helpers."""

import re
from typing import Optional

E164_PATTERN = re.compile(r"^\+?[1-9]\d{1,14}$")


def normalize_phone_number(phone_number: Optional[str]) -> Optional[str]:
    """
    Normalize a phone number to E.164 with a leading '+'.

    Spaces, dashes, dots and parentheses are stripped before matching.

    Returns:
        The normalized number, or None if the input is not a plausible E.164 number
    """
    if not phone_number:
        return None
    cleaned = re.sub(r"[\s\-().]", "", phone_number.strip())
    if not E164_PATTERN.match(cleaned):
        return None
    return cleaned if cleaned.startswith("+") else f"+{cleaned}"
