"""Retry helpers for flaky network operations (template downloads, probes)."""
import time
from typing import Callable, Tuple, Type, TypeVar

from bodhilab.core.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


def retry_call(
    func: Callable[[], T],
    max_attempts: int = 3,
    delay: float = 2.0,
    backoff: float = 2.0,
    exceptions: Tuple[Type[Exception], ...] = (Exception,),
    sleep: Callable[[float], None] = time.sleep,
    label: str = None,
) -> T:
    """Call ``func`` until it stops raising one of ``exceptions``.

    The last exception is re-raised once ``max_attempts`` is exhausted.
    """
    name = label or getattr(func, "__name__", "operation")
    current_delay = delay

    for attempt in range(1, max_attempts + 1):
        try:
            return func()
        except exceptions as e:
            if attempt == max_attempts:
                logger.error(f"{name} failed after {max_attempts} attempts: {e}")
                raise

            logger.warning(f"{name} failed (attempt {attempt}/{max_attempts}): {e}")
            logger.info(f"Retrying in {current_delay:.1f}s...")
            sleep(current_delay)
            current_delay *= backoff

    raise RuntimeError("unreachable")
