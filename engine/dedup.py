"""Phone-variant index over a company's existing contacts."""

import logging
from typing import Iterable, Optional

from .models import ExistingContact
from .phone import generate_variants

logger = logging.getLogger("crmimport.dedup")


class DuplicateIndex:
    """Maps every phone representation of every existing contact to it.

    First writer wins per representation, so a contact that shares an
    ambiguous variant with an earlier one never shadows it. Built once per
    job and read-only afterwards.
    """

    def __init__(self):
        self._by_phone: dict[str, ExistingContact] = {}
        self.contact_count = 0

    def __len__(self) -> int:
        return len(self._by_phone)

    def _claim(self, phone: Optional[str], contact: ExistingContact, verbose: bool) -> None:
        for variant in generate_variants(phone):
            owner = self._by_phone.get(variant)
            if owner is None:
                self._by_phone[variant] = contact
            elif verbose and owner.id != contact.id:
                logger.debug("Variant %s already claimed by %s, skipping %s", variant, owner.id, contact.id)

    @classmethod
    def build(cls, contacts: Iterable[ExistingContact], verbose: bool = False) -> "DuplicateIndex":
        """Index primary phones and every phones[] entry.

        ``verbose`` enables per-contact debug lines; it is off for bulk builds.
        """
        index = cls()
        for contact in contacts:
            index.contact_count += 1
            if verbose:
                logger.debug("Indexing contact %s", contact.id)
            if contact.phone:
                index._claim(contact.phone, contact, verbose)
            for entry in contact.phones:
                if entry.phone:
                    index._claim(entry.phone, contact, verbose)
        logger.info(
            "%d existing contacts, %d phone variants indexed",
            index.contact_count,
            len(index._by_phone),
        )
        return index

    def find(self, phones: Iterable[Optional[str]]) -> Optional[ExistingContact]:
        """First existing contact matching any variant of the given phones."""
        for phone in phones:
            for variant in generate_variants(phone):
                contact = self._by_phone.get(variant)
                if contact is not None:
                    return contact
        return None
