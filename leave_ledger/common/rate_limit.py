"""Rate limiting configuration using slowapi.

Provides a module-level Limiter instance that routers import for
per-endpoint limits (bulk ledger runs), wired into the app in main.py.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from leave_ledger.config import settings

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[settings.RATE_LIMIT_DEFAULT],
)
