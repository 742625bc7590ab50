"""Profile enrichment for directory-confirmed contacts.

Two layers:
- ``WahaProfileEnricher`` is the enrichment collaborator: given a chat id it
  resolves LID <-> phone, fetches the avatar and profile names.
- ``ContactEnricher`` merges that profile into a PreparedContact, falling
  back to a photo-only fetch when the collaborator fails.

Nothing here raises into the batch loop.
"""

import logging
from typing import Optional, Protocol

from .directory import DirectoryClient
from .models import EnrichedContact, EnrichmentResponse, PhoneEntry, PhoneType, PreparedContact
from .phone import clean_phone, strip_chat_suffix

logger = logging.getLogger("crmimport.enrichment")

DEFAULT_FIRST_NAME = "New contact"


class ProfileEnricher(Protocol):
    async def enrich(
        self,
        chat_id: str,
        session_name: str,
        company_id: str,
        push_name: Optional[str] = None,
    ) -> EnrichmentResponse:  # pragma: no cover - protocol
        ...


def split_name(full_name: Optional[str]) -> tuple[Optional[str], Optional[str]]:
    """'Maria da Silva' -> ('Maria', 'da Silva')."""
    if not full_name or not full_name.strip():
        return None, None
    parts = full_name.split()
    if len(parts) == 1:
        return parts[0], None
    return parts[0], " ".join(parts[1:])


class WahaProfileEnricher:
    """Builds an enriched profile from the messaging API.

    Each lookup fails soft: a missing LID, photo or name only leaves that
    field empty.
    """

    def __init__(self, directory: DirectoryClient):
        self._directory = directory

    async def _resolve_identifier(self, chat_id: str, session_name: str) -> tuple[Optional[str], Optional[str]]:
        if "@lid" in chat_id:
            phone = None
            try:
                phone = await self._directory.phone_for_lid(session_name, chat_id)
            except Exception as e:
                logger.warning("Could not resolve LID %s: %s", chat_id, e)
            return phone, chat_id

        phone = clean_phone(strip_chat_suffix(chat_id))
        lid = None
        if phone:
            try:
                lid = await self._directory.lid_for_phone(session_name, phone)
            except Exception as e:
                # Personal accounts have no LID mapping.
                logger.debug("No LID for %s: %s", phone, e)
        return phone, lid

    async def enrich(
        self,
        chat_id: str,
        session_name: str,
        company_id: str,
        push_name: Optional[str] = None,
    ) -> EnrichmentResponse:
        if not chat_id or not session_name or not company_id:
            return EnrichmentResponse(
                success=False,
                error="chat_id, session_name and company_id are required",
            )

        phone, lid = await self._resolve_identifier(chat_id, session_name)
        avatar_url = await self._directory.profile_picture(chat_id, session_name)

        info: dict = {}
        try:
            info = await self._directory.contact_info(chat_id, session_name)
        except Exception as e:
            logger.debug("Contact info unavailable for %s: %s", chat_id, e)

        first_name, last_name = split_name(info.get("pushname") or push_name)
        contact = EnrichedContact(
            phone=phone,
            lid=lid,
            first_name=first_name or DEFAULT_FIRST_NAME,
            last_name=last_name,
            nickname=info.get("name") or None,
            avatar_url=avatar_url,
        )
        logger.debug(
            "Enriched %s: phone=%s lid=%s has_avatar=%s",
            chat_id,
            contact.phone,
            contact.lid,
            bool(contact.avatar_url),
        )
        return EnrichmentResponse(success=True, contact=contact)


def apply_enrichment(contact: PreparedContact, enriched: EnrichedContact) -> None:
    """Merge an enriched profile into a contact. Directory phone wins over input."""
    if enriched.phone:
        contact.phone = enriched.phone
    if enriched.avatar_url:
        contact.avatar_url = enriched.avatar_url
    if enriched.nickname:
        contact.nickname = enriched.nickname
    if enriched.lid and not contact.has_phone_type(PhoneType.lid.value):
        contact.phones.append(PhoneEntry(phone=enriched.lid, type=PhoneType.lid.value))


class ContactEnricher:
    """Enrich a contact, degrading to a photo-only fetch on failure."""

    def __init__(self, enricher: ProfileEnricher, directory: DirectoryClient):
        self._enricher = enricher
        self._directory = directory

    async def enrich(
        self,
        contact: PreparedContact,
        chat_id: str,
        session_name: str,
        company_id: str,
    ) -> bool:
        """Return True when the full profile was merged, False on fallback."""
        response: Optional[EnrichmentResponse] = None
        try:
            response = await self._enricher.enrich(
                chat_id=chat_id,
                session_name=session_name,
                company_id=company_id,
                push_name=contact.first_name,
            )
        except Exception as e:
            logger.error("Enrichment failed for %s: %s", contact.first_name, e)

        if response is not None and response.success and response.contact is not None:
            apply_enrichment(contact, response.contact)
            logger.debug("Contact enriched: %s (%s)", contact.first_name, contact.phone)
            return True

        if response is not None and not response.success:
            logger.info(
                "Enrichment unavailable for %s, using basic data: %s",
                contact.first_name,
                response.error,
            )

        try:
            photo_url = await self._directory.profile_picture(chat_id, session_name)
        except Exception as e:
            logger.warning("Photo fallback failed for %s: %s", contact.first_name, e)
            photo_url = None
        if photo_url:
            contact.avatar_url = photo_url
        return False
