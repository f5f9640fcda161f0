"""
Best-effort side effects.

Query tracking and content-gap detection must never fail or delay the search
response. Both go through `run_best_effort`, which logs and absorbs any
exception and returns None instead.
"""

import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar

T = TypeVar("T")

logger = logging.getLogger("Javari.SideEffects")


async def run_best_effort(
    label: str,
    func: Callable[..., Awaitable[T]],
    *args: Any,
    **kwargs: Any,
) -> Optional[T]:
    """
    Await `func(*args, **kwargs)`; on any exception log it and return None.

    Args:
        label: Short name of the side effect for the log line
        func: Coroutine function to run
    """
    try:
        return await func(*args, **kwargs)
    except Exception as e:
        logger.warning(f"Best-effort {label} failed: {e}", exc_info=True)
        return None
