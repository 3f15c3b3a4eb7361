"""
api/limiter.py -- Shared slowapi rate limiter instance.

api/main.py mounts it as middleware and stores it on app.state.limiter;
api/routes/v1/auth.py applies Settings.login_rate_limit to POST /auth/login
with @limiter.limit().

Keyed by client address. The counters live in process memory, so each worker
enforces its own budget and a restart forgets every counter.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")
