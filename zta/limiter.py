from slowapi import Limiter
from slowapi.util import get_remote_address
from zta.config import settings

# In-process storage: counters reset whenever the process restarts
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[settings.DEFAULT_RATELIMIT],
    enabled=settings.RATELIMIT_ENABLED,
)
