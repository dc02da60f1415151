"""
HTTP surface of Elevatr.

Usage:
    uvicorn elevatr.api.app:app
"""

from elevatr.api.app import app

__all__ = ["app"]
