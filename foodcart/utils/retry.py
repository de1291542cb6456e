# foodcart/utils/retry.py
from tenacity import (
    AsyncRetrying,
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
)
import redis

from foodcart.domain.errors import RemoteUnavailable


def reconcile_retrying(attempts: int = 3, min_wait: float = 0.2, max_wait: float = 2.0) -> AsyncRetrying:
    # reads only, fetch_all is idempotent
    return AsyncRetrying(
        reraise=True,
        stop=stop_after_attempt(attempts),
        wait=wait_exponential(multiplier=min_wait, min=min_wait, max=max_wait),
        retry=retry_if_exception_type(RemoteUnavailable),
    )


def redis_retry():
    return retry(
        reraise=True,
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.2, min=0.2, max=2),
        retry=retry_if_exception_type(redis.RedisError),
    )
