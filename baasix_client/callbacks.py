"""Invoke application callbacks without letting them break the caller."""

from __future__ import annotations

import inspect
import logging
from collections.abc import Callable
from typing import Any

_LOGGER = logging.getLogger(__name__)


async def invoke_callback(
    callback: Callable[..., Any], *args: Any, description: str = "Callback"
) -> None:
    """Call ``callback``, awaiting it when it returns an awaitable.

    Exceptions are logged and swallowed so one failing callback cannot stop
    delivery to the next one.
    """
    try:
        result = callback(*args)
        if inspect.isawaitable(result):
            await result
    except Exception as err:
        _LOGGER.exception("%s error: %s", description, err)
