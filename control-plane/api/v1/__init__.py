"""
API v1 modules
"""

from . import agent, admin, client

__all__ = ["agent", "admin", "client"]
