"""Pipeline event hooks (metrics/log sinks)."""

import inspect
import logging

logger = logging.getLogger("crmimport.events")


async def _maybe_await(result):
    if inspect.isawaitable(result):
        return await result
    return result


async def emit_event(event_callback, event: dict) -> None:
    """Deliver an event to an optional sync or async callback.

    Callback failures are logged and dropped; observers never affect the job.
    """
    if not event_callback:
        return
    try:
        await _maybe_await(event_callback(event))
    except Exception as e:
        logger.debug("Event callback failed: %s", e)
