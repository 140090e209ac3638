"""
api/limiter.py -- Shared slowapi rate limiter instance.

Imported by api/main.py (mounted as middleware and exception handler) and
api/routes/v1/auth.py (per-route limits on signup and signin).

All routes must count against this one instance. Counters live in
Settings.rate_limit_storage_uri; the in-memory default is per process.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

limiter = Limiter(key_func=get_remote_address, storage_uri=get_settings().rate_limit_storage_uri)
