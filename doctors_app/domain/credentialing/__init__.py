"""Credentialing domain - doctor upgrade requests and their admin review"""

from .router import router

__all__ = ["router"]
