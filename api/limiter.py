"""
api/limiter.py -- Rate limiter for the credential endpoints.

login, forgot-password and reset-password in api/routes/v1/auth.py take their
limit from LOGIN_RATE_LIMIT. Counters are in process memory and keyed by
client address; api/main.py registers this instance as app.state.limiter.

Route order matters: @router.post() goes outermost and @limiter.limit()
directly on the function, so FastAPI registers the limited wrapper.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")
