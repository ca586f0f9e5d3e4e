"""Database utility functions."""
import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from sqlalchemy.exc import OperationalError, InterfaceError

logger = logging.getLogger(__name__)

T = TypeVar('T')

# Substrings of driver errors worth another attempt
TRANSIENT_ERRORS = (
    "database is locked",  # SQLite writer contention
    "connection refused",
    "connection reset",
    "connection closed",
    "server closed",
    "timeout",
    "too many clients",
)


def is_transient(error: Exception) -> bool:
    message = str(error).lower()
    return any(fragment in message for fragment in TRANSIENT_ERRORS)


async def retry_on_lock(coro_func: Callable[[], Awaitable[T]], max_retries: int = 3, base_delay: float = 0.1) -> T:
    """Run a database operation, retrying transient failures with exponential backoff.

    Queue workers commit check results while API requests write subjects, so
    SQLite writers can collide and PostgreSQL pools can run dry under load.

    Args:
        coro_func: Callable returning the awaitable to run (e.g. session.commit)
        max_retries: Total number of attempts
        base_delay: Delay before the second attempt, doubled after each failure

    Raises:
        OperationalError / InterfaceError: when the error is not transient or
        every attempt failed
    """
    for attempt in range(1, max_retries + 1):
        try:
            return await coro_func()
        except (OperationalError, InterfaceError) as e:
            if not is_transient(e) or attempt == max_retries:
                raise
            delay = base_delay * (2 ** (attempt - 1))
            logger.warning(f"Database transient error, retrying in {delay}s (attempt {attempt}/{max_retries}): {e}")
            await asyncio.sleep(delay)
