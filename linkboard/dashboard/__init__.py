"""JSON dashboard for linkboard devices.

Exposes sync status, manual sync, and state inspection using FastAPI.
"""

from .app import create_app

__all__ = ["create_app"]
