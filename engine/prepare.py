"""Coerce raw contact payloads into PreparedContact records.

This is the only place untyped input is read; everything downstream works
on PreparedContact.
"""

import re
from typing import Any, Mapping, Optional

from .models import (
    EmailEntry,
    IndividualAssignment,
    PhoneEntry,
    PhoneType,
    PreparedContact,
    RawContactRecord,
)
from .tags import contact_tag_names, ids_for_names, record_key

_GENDERS = {
    "male": ("masculino", "male", "m", "homem"),
    "female": ("feminino", "female", "f", "mulher"),
    "other": ("outro", "other", "o"),
}

_BR_DATE_RE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$")
_ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}")
_NUMBER_RE = re.compile(r"-?\d+(?:\.\d+)?")


def convert_gender(value: Optional[str]) -> str:
    if not value or not isinstance(value, str):
        return "not_informed"
    normalized = value.strip().lower()
    for gender, aliases in _GENDERS.items():
        if normalized in aliases:
            return gender
    return "not_informed"


def convert_birth_date(value: Optional[str]) -> Optional[str]:
    """dd/mm/yyyy -> yyyy-mm-dd. ISO dates pass through; anything else is dropped."""
    if not value or not isinstance(value, str):
        return None
    value = value.strip()
    match = _BR_DATE_RE.match(value)
    if match:
        day, month, year = match.groups()
        return f"{year}-{month.zfill(2)}-{day.zfill(2)}"
    if _ISO_DATE_RE.match(value):
        return value[:10]
    return None


def convert_value(value: Any) -> Optional[float]:
    """Parse an estimated deal value such as ``'R$ 1.500,50'`` or ``'1500.5'``."""
    if value is None or value == "" or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if not isinstance(value, str):
        return None

    cleaned = re.sub(r"[^\d,.\-]", "", value)
    if "," in cleaned and "." in cleaned:
        # The rightmost separator is the decimal one.
        if cleaned.rfind(",") > cleaned.rfind("."):
            cleaned = cleaned.replace(".", "").replace(",", ".")
        else:
            cleaned = cleaned.replace(",", "")
    elif "," in cleaned:
        cleaned = cleaned.replace(",", ".", 1).replace(",", "")

    match = _NUMBER_RE.match(cleaned)
    if not match:
        return None
    return float(match.group(0))


def document_type(document_number: str) -> Optional[str]:
    digits = re.sub(r"\D", "", document_number or "")
    if not digits:
        return None
    return "cpf" if len(digits) == 11 else "cnpj"


def prepare_contact(
    record: RawContactRecord,
    index: int,
    *,
    company_id: str,
    import_name: str,
    global_tags: list[Any],
    individual_assignments: Mapping[str, IndividualAssignment],
    tag_ids: Mapping[str, str],
) -> PreparedContact:
    """Build the typed contact for one raw record (``index`` is 0-based)."""
    document_number = (record.document_number or "").strip()
    contact = PreparedContact(
        temp_id=record_key(record, index),
        company_id=company_id,
        first_name=(record.first_name or "").strip() or f"Contact {index + 1}",
        last_name=(record.last_name or "").strip(),
        document_number=document_number,
        document_type=document_type(document_number),
        gender=convert_gender(record.gender),
        birth_date=convert_birth_date(record.birth_date),
        responsible_name=record.responsible_name or "",
        company_name=record.company_name or "",
        position=record.position or "",
        custom_position=record.custom_position or None,
        status=record.status or "lead",
        source=record.source or "import",
        notes=[],
        value=convert_value(record.value),
        import_name=import_name,
        import_type="manual",
    )

    email = (record.email or "").strip()
    if email:
        contact.email = email
        contact.emails.append(EmailEntry(email=email, type="primary"))

    phone = (record.phone or "").strip()
    if phone:
        contact.phone = phone
        contact.phones.append(PhoneEntry(phone=phone, type=PhoneType.primary.value))

    names = contact_tag_names(record, index, global_tags, individual_assignments)
    contact.tags = ids_for_names(names, tag_ids)
    return contact
