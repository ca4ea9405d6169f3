"""Helpers for callables that may be either sync or async."""
from __future__ import annotations

import inspect
from typing import Any


async def maybe_await(value: Any) -> Any:
    """Await `value` if it is awaitable, otherwise return it as is."""
    if inspect.isawaitable(value):
        return await value
    return value
