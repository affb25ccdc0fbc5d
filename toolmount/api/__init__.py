"""
toolmount.api - FastAPI REST API

Thin request/response boundary over the tool runtime.

Usage:
    uvicorn toolmount.api.main:app --reload
"""

from toolmount.api.main import app, create_app

__all__ = ["app", "create_app"]
