"""API module."""

from .family import router as family_router
from .sessions import router as sessions_router
from .storage import router as storage_router

__all__ = ['family_router', 'sessions_router', 'storage_router']
