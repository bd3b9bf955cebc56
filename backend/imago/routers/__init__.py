"""Imago Occurrences - API Routers"""
from .intake import router as intake_router
from .admin import router as admin_router
from .auth import router as auth_router
from .documents import router as documents_router

__all__ = [
    "intake_router",
    "admin_router",
    "auth_router",
    "documents_router",
]
