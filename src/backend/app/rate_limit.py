import time
from typing import Tuple

from .cache import cache_incr


def check_and_increment(client_key: str, key: str, max_per_minute: int = 120, burst: int = 60) -> Tuple[bool, int]:
    """Fixed-minute bucket with a small burst allowance.
    Counts the request and reports whether it is still within limit + burst.
    """
    now = int(time.time() // 60)
    bucket = f"rl:{client_key}:{key}:{now}"
    count = cache_incr(bucket, 1, expire_seconds=65)
    if count > max_per_minute + burst:
        return False, count
    return True, count
