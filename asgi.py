"""
asgi.py -- ASGI entry point for RecordVault.

Kept separate from api/main.py so process managers have one stable import
path regardless of how the API package is laid out.

Run with:  uvicorn asgi:app --reload
           uvicorn asgi:app --host 0.0.0.0 --port 8000 --proxy-headers
"""

from api.main import app

__all__ = ["app"]
