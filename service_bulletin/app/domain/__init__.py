"""
Domain repositories for the Bulletin Service.

Each repository reads through the request's cache cycle and writes through
``CacheCycle.run_mutation`` so no write reaches the store without
invalidating the scopes it affects.
"""

from .meals import MealRepository
from .messages import MessageRepository
from .news import NewsRepository
from .posts import PostRepository

__all__ = [
    "MealRepository",
    "MessageRepository",
    "NewsRepository",
    "PostRepository",
]
