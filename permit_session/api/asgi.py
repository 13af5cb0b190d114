# ASGI entry point
"""
================================================================================
FILE: permit_session/api/asgi.py
================================================================================

PURPOSE:
    ASGI entry point for production servers (uvicorn, gunicorn with uvicorn
    workers). Settings are read from the environment at startup.

USAGE:
    uvicorn permit_session.api.asgi:app --host 0.0.0.0 --port 8000
"""

from permit_session.api.main import create_app

# ASGI servers look for 'app' by default
app = create_app()

__all__ = ["app"]
