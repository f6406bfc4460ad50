import time
import logging
from typing import Any, Callable, Optional


logger = logging.getLogger(__name__)


def wait_for_session(check: Callable[[], Optional[Any]],
                     attempts: int = 5,
                     base_delay: float = 0.25,
                     sleep: Callable[[float], None] = time.sleep) -> Optional[Any]:
    """Wait for a freshly issued session to become visible.

    ``check`` returns the session when authenticated and a falsy value
    otherwise. It is called once, then retried with doubling delays until
    the attempt bound is reached.
    """
    delay = base_delay
    for attempt in range(attempts):
        try:
            session = check()
        except Exception as e:
            logger.warning(f"Session check failed (attempt {attempt + 1}): {e}")
            session = None

        if session:
            logger.info(f"Session confirmed after {attempt + 1} check(s)")
            return session

        if attempt < attempts - 1:
            sleep(delay)
            delay *= 2

    logger.warning(f"Session not confirmed after {attempts} checks")
    return None
