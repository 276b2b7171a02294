"""Appointments domain - booking, lifecycle transitions, reviews and doctor statistics"""

from .router import admin_router, router

__all__ = ["admin_router", "router"]
