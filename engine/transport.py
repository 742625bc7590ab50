"""Async JSON-over-HTTP transport shared by the outbound clients.

Clients take a ``request_fn`` with the signature of ``aiohttp_request`` so
tests can swap the network out for a fake.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Optional

import aiohttp

logger = logging.getLogger("crmimport.transport")


@dataclass
class HttpResponse:
    status_code: int
    payload: Any = None
    text: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


async def aiohttp_request(
    method: str,
    url: str,
    *,
    headers: Optional[dict[str, str]] = None,
    params: Optional[dict[str, str]] = None,
    json_body: Any = None,
    timeout_seconds: Optional[float] = None,
) -> HttpResponse:
    """Issue one request and decode a JSON body when there is one.

    Raises aiohttp/asyncio errors on transport failure; callers decide how
    to downgrade them.
    """
    session_kwargs = {}
    if timeout_seconds:
        session_kwargs["timeout"] = aiohttp.ClientTimeout(total=timeout_seconds)
    async with aiohttp.ClientSession(**session_kwargs) as session:
        async with session.request(
            method,
            url,
            headers=headers,
            params=params,
            json=json_body,
        ) as response:
            text = await response.text()
            payload = None
            if text:
                try:
                    payload = json.loads(text)
                except ValueError:
                    logger.debug("Non-JSON response from %s (%s)", url, response.status)
            return HttpResponse(status_code=response.status, payload=payload, text=text)
