"""
api/limiter.py -- Shared slowapi rate limiter instance.

Imported by api/main.py (mounted as middleware) and by the route modules that
apply per-route limits with @limiter.limit(): legacy login and just-in-time
provisioning.

A single shared instance keeps one in-memory counter store for the whole
process. Separate instances per module would each count in isolation and the
limits would never trigger.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")
