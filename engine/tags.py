"""Tag name collection and name -> id resolution for one import job."""

import logging
import re
from typing import Any, Iterable, Mapping, Optional

from store.base import CrmStore

from .models import IndividualAssignment, RawContactRecord

logger = logging.getLogger("crmimport.tags")

_TAG_SPLIT_RE = re.compile(r"[,;]")


def tag_key(name: str) -> str:
    """Comparison key: tag names are unique per company ignoring case/edge whitespace."""
    return name.strip().lower()


def _tag_name(tag: Any) -> Optional[str]:
    if isinstance(tag, Mapping):
        tag = tag.get("name")
    if tag is None or isinstance(tag, bool):
        return None
    name = str(tag).strip()
    return name or None


def parse_tag_names(value: Any) -> list[str]:
    """Read tag names from a delimited string, a list, or ``{name}`` objects."""
    if value is None:
        return []
    if isinstance(value, str):
        parts: Iterable[Any] = _TAG_SPLIT_RE.split(value)
    elif isinstance(value, (list, tuple, set)):
        parts = value
    else:
        parts = [value]
    names = []
    for part in parts:
        name = _tag_name(part)
        if name:
            names.append(name)
    return names


def record_key(record: RawContactRecord, index: int) -> str:
    """Client-side id used by individual tag assignments."""
    return record.temp_id or f"contact_{index}"


def contact_tag_names(
    record: RawContactRecord,
    index: int,
    global_tags: list[Any],
    individual_assignments: Mapping[str, IndividualAssignment],
) -> list[str]:
    """Names requested for one record: global + individual + its own column."""
    names = parse_tag_names(global_tags)
    assignment = individual_assignments.get(record_key(record, index))
    if assignment is not None:
        names.extend(parse_tag_names(assignment.tags))
    names.extend(parse_tag_names(record.tags))
    return names


def _distinct(names: Iterable[str]) -> list[str]:
    seen: dict[str, str] = {}
    for name in names:
        seen.setdefault(tag_key(name), name)
    return list(seen.values())


def collect_tag_names(
    global_tags: list[Any],
    individual_assignments: Mapping[str, IndividualAssignment],
    records: list[RawContactRecord],
) -> list[str]:
    """Union of every tag name referenced by the job, first spelling kept."""
    names: list[str] = []
    for index, record in enumerate(records):
        names.extend(contact_tag_names(record, index, global_tags, individual_assignments))
    return _distinct(names)


def resolve_tag_ids(store: CrmStore, company_id: str, names: list[str]) -> dict[str, str]:
    """Map tag keys to ids, creating the missing tags in one bulk call.

    Blocking (store I/O); run it off the event loop.
    """
    existing = store.list_tags(company_id)
    tag_ids = {tag_key(tag.name): tag.id for tag in existing}
    logger.info("%d existing tags loaded for company %s", len(existing), company_id)

    missing = [name for name in _distinct(names) if tag_key(name) not in tag_ids]
    if missing:
        logger.info("Creating %d new tags", len(missing))
        for tag in store.create_tags(company_id, missing):
            tag_ids[tag_key(tag.name)] = tag.id
    return tag_ids


def ids_for_names(names: Iterable[str], tag_ids: Mapping[str, str]) -> list[str]:
    """Resolve names to ids in order, dropping unknown names and repeats."""
    ids: list[str] = []
    for name in names:
        tag_id = tag_ids.get(tag_key(name))
        if tag_id is None:
            logger.warning("Tag %r missing from the id map", name)
            continue
        if tag_id not in ids:
            ids.append(tag_id)
    return ids
