"""
User Directory Module
用户目录模块

In-memory user records with CRUD and bulk delete routes.
"""

from .memory_store import User, UserStore, UserNotFound, DuplicateEmail
from .routes import router as users_router

__all__ = [
    "User",
    "UserStore",
    "UserNotFound",
    "DuplicateEmail",
    "users_router",
]
