"""Phone canonicalization and Brazilian mobile-number variants.

Brazilian mobiles gained a leading ``9`` in 2012-2016, so the same
subscriber may be stored as ``55 DD 9XXXX-XXXX`` (13 digits) or
``55 DD XXXX-XXXX`` (12 digits), with or without the ``55`` country
code. Every comparison in the import pipeline goes through the variant
list produced here.
"""

import re
from typing import Optional

COUNTRY_CODE = "55"
MOBILE_PREFIX = "9"

_NON_DIGIT_RE = re.compile(r"\D")


def clean_phone(raw) -> Optional[str]:
    """Strip everything but digits.

    Returns None when the input is not text/number or no digits remain.
    """
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        raw = str(raw)
    if not isinstance(raw, str):
        return None
    digits = _NON_DIGIT_RE.sub("", raw)
    return digits or None


def generate_variants(raw) -> list[str]:
    """Return every plausible representation of a phone, canonical first.

    - 13 digits with country code and mobile 9 -> also without the 9
    - 12 digits with country code -> also with the 9
    - 11 digits without country code -> country code added, and without the 9
    - 10 digits without country code -> country code added, and with the 9
    """
    cleaned = clean_phone(raw)
    if not cleaned:
        return []

    variants = [cleaned]
    length = len(cleaned)
    has_country_code = cleaned.startswith(COUNTRY_CODE)

    if length == 13 and has_country_code:
        area, ninth, rest = cleaned[2:4], cleaned[4:5], cleaned[5:]
        if ninth == MOBILE_PREFIX and len(rest) == 8:
            variants.append(f"{COUNTRY_CODE}{area}{rest}")

    elif length == 12 and has_country_code:
        area, number = cleaned[2:4], cleaned[4:]
        if len(number) == 8:
            variants.append(f"{COUNTRY_CODE}{area}{MOBILE_PREFIX}{number}")

    elif length == 11 and not has_country_code:
        variants.append(f"{COUNTRY_CODE}{cleaned}")
        area, ninth, rest = cleaned[0:2], cleaned[2:3], cleaned[3:]
        if ninth == MOBILE_PREFIX and len(rest) == 8:
            variants.append(f"{COUNTRY_CODE}{area}{rest}")

    elif length == 10 and not has_country_code:
        variants.append(f"{COUNTRY_CODE}{cleaned}")
        area, number = cleaned[0:2], cleaned[2:]
        if len(number) == 8:
            variants.append(f"{COUNTRY_CODE}{area}{MOBILE_PREFIX}{number}")

    return list(dict.fromkeys(variants))


def strip_chat_suffix(chat_id: Optional[str]) -> Optional[str]:
    """``5511987654321@c.us`` -> ``5511987654321``."""
    if not chat_id:
        return None
    return chat_id.replace("@c.us", "").replace("@s.whatsapp.net", "") or None
