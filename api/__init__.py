"""
Operations API for the notification service.

Run with:
    uv run uvicorn api.main:app --reload
"""

from api.main import app

__all__ = ["app"]
