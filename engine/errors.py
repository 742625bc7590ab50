"""Import pipeline errors and directory failure classification.

Only input and tenant errors ever reach the caller as 4xx. Directory,
enrichment and progress-sink failures are downgraded where they happen;
see ``classify_directory_failure`` for how a failed directory call is
described in a record's validation reason.
"""

import re
from typing import Optional


class CrmImportError(Exception):
    """Base class for errors raised by the import pipeline."""


class ImportInputError(CrmImportError):
    """Malformed or empty import request. Surfaces as HTTP 400."""


class TenantError(CrmImportError):
    """Unauthenticated caller or caller without a company. Surfaces as HTTP 401."""


class StoreError(CrmImportError):
    """A persistence call failed."""


class ImportAborted(CrmImportError):
    """An import stopped on an unrecoverable error after it started.

    The durable job record has been marked aborted (best effort) before
    this is raised.
    """

    def __init__(self, import_id: Optional[str], cause: BaseException):
        super().__init__(str(cause))
        self.import_id = import_id
        self.cause = cause


# --- Directory failure classification ---

_SESSION_PATTERNS: list[re.Pattern] = [
    re.compile(r"session .* not found", re.I),
    re.compile(r"session .* (stopped|failed|starting)", re.I),
    re.compile(r"not (logged|authenticated)", re.I),
    re.compile(r"scan qr", re.I),
]

_RATE_LIMIT_PATTERNS: list[re.Pattern] = [
    re.compile(r"rate limit", re.I),
    re.compile(r"too many requests", re.I),
    re.compile(r"try again later", re.I),
]


def _match_any(message: str, patterns: list[re.Pattern]) -> bool:
    return any(p.search(message) for p in patterns)


def classify_directory_failure(status_code: int, message: str = "") -> str:
    """Name the failure category of a non-2xx directory response.

    - 401/403: unauthorized (bad API key)
    - 429 or throttling text: rate_limited
    - session text (any code): session_unavailable
    - 404: not_found
    - 5xx: server_error
    - anything else: http_error
    """
    message = message or ""
    if status_code in (401, 403):
        return "unauthorized"
    if status_code == 429 or _match_any(message, _RATE_LIMIT_PATTERNS):
        return "rate_limited"
    if _match_any(message, _SESSION_PATTERNS):
        return "session_unavailable"
    if status_code == 404:
        return "not_found"
    if 500 <= status_code < 600:
        return "server_error"
    return "http_error"
