import logging
import time
from functools import wraps

logger = logging.getLogger(__name__)


def retry(times=3, backoff=0.2, exceptions=(Exception,)):
    """Retry on the given exceptions with exponential backoff.

    Only wrap calls that are safe to repeat.
    """
    def deco(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            attempt = 0
            while True:
                attempt += 1
                try:
                    return fn(*args, **kwargs)
                except exceptions as e:
                    if attempt >= times:
                        raise
                    logger.warning("[retry] %s failed (%d/%d): %s", fn.__name__, attempt, times, e)
                    time.sleep(backoff * (2 ** (attempt - 1)))
        return wrapper
    return deco
