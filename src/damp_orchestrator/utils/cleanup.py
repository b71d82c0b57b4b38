"""Shared best-effort cleanup helpers.

Cleanup steps (temp files, hosts entries, log stream shutdown, rollback
removals) must never mask the outcome of the operation they follow. Every
such step runs inside :func:`best_effort`, which logs failures and swallows
them in one place.
"""

import os
import shutil
from contextlib import asynccontextmanager, contextmanager
from typing import Any, AsyncIterator, Iterator

from damp_orchestrator.utils import get_logger

logger = get_logger(__name__)


@asynccontextmanager
async def best_effort(action: str, **context: Any) -> AsyncIterator[None]:
    """
    Run a cleanup block, logging and swallowing any error it raises.

    Args:
        action: Short description of the cleanup step, used as log message
        **context: Extra structured fields for the log record
    """
    try:
        yield
    except Exception as e:
        logger.warning(
            f"Cleanup step failed: {action}",
            extra={**context, "error": str(e)},
        )


@contextmanager
def best_effort_sync(action: str, **context: Any) -> Iterator[None]:
    """Synchronous variant of :func:`best_effort` for non-async call sites."""
    try:
        yield
    except Exception as e:
        logger.warning(
            f"Cleanup step failed: {action}",
            extra={**context, "error": str(e)},
        )


def remove_path(path: str) -> None:
    """
    Remove a file or directory tree, ignoring paths that are already gone.

    Args:
        path: File or directory to remove
    """
    if os.path.isdir(path) and not os.path.islink(path):
        shutil.rmtree(path)
    elif os.path.lexists(path):
        os.remove(path)
