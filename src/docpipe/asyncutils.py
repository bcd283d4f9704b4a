from __future__ import annotations

import inspect
from typing import Any


async def maybe_await(value: Any) -> Any:
    """Return ``value``, awaiting it first if it is awaitable.

    Lets user hooks (retrievers, transforms, uri builders) be plain or async.
    """
    if inspect.isawaitable(value):
        return await value
    return value
