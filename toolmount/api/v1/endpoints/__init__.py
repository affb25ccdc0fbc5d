"""
toolmount.api.v1.endpoints - API Endpoints

Contains all v1 API endpoint modules.
"""

from toolmount.api.v1.endpoints import primitives, settings

__all__ = ["primitives", "settings"]
