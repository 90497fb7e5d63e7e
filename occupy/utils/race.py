"""First-of {operation, timeout} combinator.

Losing the race does not cancel the operation: the store call keeps running
and may still commit after the caller has been told it timed out. Its late
result or exception is only logged.
"""

import asyncio
import logging
from typing import Awaitable, TypeVar

from occupy.errors import OperationTimeout

LOG = logging.getLogger("occupy.utils.race")

T = TypeVar("T")


def _log_late_outcome(label: str):
    def _done(task: asyncio.Future) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            LOG.warning("%s finished after its deadline with error: %s", label, exc)
        else:
            LOG.warning("%s finished after its deadline; its result was not observed", label)

    return _done


async def first_of(operation: Awaitable[T], timeout: float, label: str = "operation") -> T:
    """Await operation for at most timeout seconds.

    Raises OperationTimeout if the deadline wins; the operation is left running.
    """
    task = asyncio.ensure_future(operation)
    done, _ = await asyncio.wait({task}, timeout=timeout)
    if task in done:
        return task.result()
    task.add_done_callback(_log_late_outcome(label))
    raise OperationTimeout(label, timeout)
