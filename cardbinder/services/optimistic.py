"""
Optimistic mutation helper shared by the stores.

Every store mutation follows the same discipline:

    1. apply   - change local state immediately (visible to readers)
    2. persist - await the remote write
    3. revert  - on failure, restore local state, then re-raise

Both stores route their mutations through apply_optimistic() so neither
can drift into its own rollback rules.
"""

from collections.abc import Awaitable, Callable
from typing import TypeVar

from cardbinder.models.failure import GatewayError

T = TypeVar("T")


async def apply_optimistic(
    apply: Callable[[], None],
    persist: Callable[[], Awaitable[T]],
    revert: Callable[[], None],
) -> T:
    """
    Apply a local change, persist it, and undo the local change on failure.

    Args:
        apply: Synchronous local state change
        persist: Coroutine factory performing the remote write
        revert: Synchronous undo of ``apply``; called only on GatewayError

    Returns:
        Whatever ``persist`` returned.

    Raises:
        GatewayError: After ``revert`` has run. There is no retry; a failed
            mutation stays failed until the caller repeats it.
    """
    apply()
    try:
        return await persist()
    except GatewayError:
        revert()
        raise
