"""Messaging directory client, single-number validation and variant search.

Pipeline per phone: variants -> check-exists (in order) -> first match wins.
The directory is reached through a tenant's messaging session, which is a
shared, rate-sensitive resource: every call here is issued one at a time.
"""

import logging
import os
from typing import Any, Optional
from urllib.parse import quote

from .errors import classify_directory_failure
from .events import emit_event
from .models import DirectoryCheck
from .phone import clean_phone, generate_variants
from .transport import HttpResponse, aiohttp_request

logger = logging.getLogger("crmimport.directory")

REASON_VERIFIED = "verified"
REASON_NOT_ON_DIRECTORY = "number is not on WhatsApp"
REASON_INVALID_NUMBER = "invalid number"
REASON_NOT_FOUND_ANY_VARIANT = "not found under any variant"


class DirectoryClient:
    """Minimal client for a WAHA-compatible messaging API."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        timeout_seconds: Optional[float] = None,
        request_fn=None,
    ):
        self._base_url = base_url.rstrip("/")
        self._timeout_seconds = timeout_seconds
        self._request_fn = request_fn or aiohttp_request
        self._headers = {
            "accept": "application/json",
            "Content-Type": "application/json",
            "X-Api-Key": api_key,
        }

    async def _get(self, path: str, params: Optional[dict[str, str]] = None) -> HttpResponse:
        return await self._request_fn(
            "GET",
            f"{self._base_url}{path}",
            headers=dict(self._headers),
            params=params,
            timeout_seconds=self._timeout_seconds,
        )

    async def check_exists(self, session_name: str, phone: str) -> HttpResponse:
        return await self._get(
            "/api/contacts/check-exists",
            params={"session": session_name, "phone": phone},
        )

    async def profile_picture(self, contact_id: str, session_name: str) -> Optional[str]:
        """Return the avatar URL for a chat id, or None on any failure."""
        try:
            resp = await self._get(
                "/api/contacts/profile-picture",
                params={"contactId": contact_id, "session": session_name, "refresh": "false"},
            )
        except Exception as e:
            logger.warning("Profile picture fetch failed for %s: %s", contact_id, e)
            return None
        if not resp.ok or not isinstance(resp.payload, dict):
            return None
        return resp.payload.get("profilePictureURL") or None

    async def contact_info(self, contact_id: str, session_name: str) -> dict[str, Any]:
        resp = await self._get(
            "/api/contacts",
            params={"contactId": contact_id, "session": session_name},
        )
        if not resp.ok or not isinstance(resp.payload, dict):
            return {}
        return resp.payload

    async def lid_for_phone(self, session_name: str, phone: str) -> Optional[str]:
        """Alternate (LID) identifier of a phone; None for non-business accounts."""
        resp = await self._get(f"/api/{quote(session_name, safe='')}/lids/pn/{phone}")
        if not resp.ok or not isinstance(resp.payload, dict):
            return None
        data = resp.payload
        if data.get("lid"):
            return data["lid"]
        for key in ("id", "_serialized", "user"):
            candidate = data.get(key)
            if isinstance(candidate, str) and "@lid" in candidate:
                return candidate
        return None

    async def phone_for_lid(self, session_name: str, lid: str) -> Optional[str]:
        formatted = lid if "@lid" in lid else f"{lid}@lid"
        resp = await self._get(
            f"/api/{quote(session_name, safe='')}/lids/{quote(formatted, safe='')}"
        )
        if not resp.ok or not isinstance(resp.payload, dict):
            return None
        return clean_phone((resp.payload.get("pn") or "").replace("@c.us", ""))


async def check_single_number(
    phone: str,
    session_name: str,
    directory: DirectoryClient,
) -> DirectoryCheck:
    """Ask the directory about exactly one phone representation.

    Never raises: transport errors and non-2xx responses come back as
    ``verified=False, exists=None`` with a diagnostic reason.
    """
    cleaned = clean_phone(phone)
    if not cleaned:
        return DirectoryCheck(verified=False, exists=False, reason=REASON_INVALID_NUMBER)

    try:
        resp = await directory.check_exists(session_name, cleaned)
    except Exception as e:
        logger.error("Directory check failed for %s: %s", cleaned, e)
        return DirectoryCheck(verified=False, exists=None, phone_checked=cleaned, reason=str(e) or repr(e))

    if not resp.ok:
        category = classify_directory_failure(resp.status_code, resp.text)
        return DirectoryCheck(
            verified=False,
            exists=None,
            phone_checked=cleaned,
            reason=f"API error: {resp.status_code} ({category})",
        )

    data = resp.payload if isinstance(resp.payload, dict) else {}
    exists = bool(data.get("numberExists"))
    return DirectoryCheck(
        verified=True,
        exists=exists,
        directory_id=data.get("chatId") or None,
        phone_checked=cleaned,
        reason=REASON_VERIFIED if exists else REASON_NOT_ON_DIRECTORY,
    )


async def resolve_number(
    raw_phone: Optional[str],
    session_name: str,
    directory: DirectoryClient,
    event_callback=None,
) -> DirectoryCheck:
    """Search every variant of a phone in order, short-circuiting on a match.

    The canonical (first) variant is authoritative when nothing matches.
    """
    variants = generate_variants(raw_phone)
    if not variants:
        return DirectoryCheck(verified=False, exists=False, reason=REASON_INVALID_NUMBER)

    for variant in variants:
        result = await check_single_number(variant, session_name, directory)
        await emit_event(
            event_callback,
            {
                "type": "directory_check",
                "verified": result.verified,
                "exists": result.exists,
                "reason": result.reason,
            },
        )
        if result.exists:
            logger.debug("Directory match for %s on variant %s", raw_phone, variant)
            return result

    return DirectoryCheck(
        verified=True,
        exists=False,
        phone_checked=variants[0],
        reason=REASON_NOT_FOUND_ANY_VARIANT,
    )


def directory_client_from_env() -> Optional[DirectoryClient]:
    url = os.environ.get("WAHA_API_URL", "")
    key = os.environ.get("WAHA_API_KEY", "")
    if not url or not key:
        return None
    timeout = os.environ.get("WAHA_TIMEOUT_SECONDS")
    return DirectoryClient(url, key, timeout_seconds=float(timeout) if timeout else None)
