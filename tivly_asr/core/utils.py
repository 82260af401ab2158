"""Shared utility functions for tivly-asr."""

import asyncio
import inspect
import json
import logging
from typing import Any

logger = logging.getLogger(__name__)


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging for scripts and interactive use."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def parse_json_object(raw: str | bytes | None) -> dict[str, Any] | None:
    """Decode a JSON object, returning None for anything malformed.

    Non-object JSON (lists, numbers, strings) is treated as malformed too.
    """
    if raw is None:
        return None
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, TypeError, UnicodeDecodeError):
        return None
    if not isinstance(data, dict):
        return None
    return data


async def invoke_callback(callback, *args) -> None:
    """Call a sync or async callback; failures are logged, never raised."""
    if callback is None:
        return
    try:
        result = callback(*args)
        if inspect.isawaitable(result):
            await result
    except Exception:
        logger.exception("Callback %r failed", getattr(callback, "__name__", callback))


# Strong references to callback tasks until they finish
_background_tasks: set[asyncio.Future] = set()


def _on_callback_done(task: asyncio.Future) -> None:
    _background_tasks.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("Async callback failed", exc_info=exc)


def fire_callback(callback, *args) -> None:
    """Synchronous variant of ``invoke_callback`` for event-loop callbacks.

    An awaitable result is scheduled as a task on the running loop and kept
    alive until it finishes; its failure is logged.
    """
    if callback is None:
        return
    try:
        result = callback(*args)
    except Exception:
        logger.exception("Callback %r failed", getattr(callback, "__name__", callback))
        return
    if inspect.isawaitable(result):
        task = asyncio.ensure_future(result)
        _background_tasks.add(task)
        task.add_done_callback(_on_callback_done)
