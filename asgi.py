"""
asgi.py -- Application assembly for hearthgate.

The ASGI servers' import target. api/main.py builds the app; this module is
the stable name deployment configuration points at.

Run with:  uvicorn asgi:app --reload
"""

from api.main import app

__all__ = ["app"]
