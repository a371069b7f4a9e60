"""
Request and response models for the Bulletin Service.
"""

import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from .caching.invalidation import Granularity


class Message(BaseModel):
    """A message board entry."""
    id: int
    text: str


class MessageCreate(BaseModel):
    """Request model for posting a message."""
    text: str = Field(..., min_length=1, max_length=2000, description="Message text")


class MessageList(BaseModel):
    messages: List[Message]
    total: int


class Post(BaseModel):
    """A feed post as seen by one viewer."""
    id: int
    image: Optional[str] = None
    title: str
    content: str
    created_at: str
    user_first_name: str
    user_last_name: str
    likes: int = 0
    is_liked: bool = False


class PostList(BaseModel):
    posts: List[Post]


class LikeStatus(BaseModel):
    """Authoritative like state of a post after a toggle."""
    id: int
    is_liked: bool
    likes: int


class NewsItem(BaseModel):
    id: int
    slug: str
    title: str
    content: str
    date: str
    image: Optional[str] = None


class NewsCreate(BaseModel):
    """Request model for publishing a news item."""
    title: str = Field(..., min_length=1, description="Headline")
    content: str = Field(..., min_length=1, description="Body")
    date: datetime.date
    slug: Optional[str] = Field(None, description="URL slug, derived from the title when omitted")
    image: Optional[str] = None


class NewsList(BaseModel):
    news: List[NewsItem]


class ArchivePage(BaseModel):
    """Archive navigation links plus the news for the selected period."""
    year: Optional[str] = None
    month: Optional[str] = None
    links: List[str]
    news: List[NewsItem]


class InvalidateRequest(BaseModel):
    """Request model for a manual invalidation."""
    tags: List[str] = Field(..., min_length=1, description="Scopes to invalidate")
    granularity: Granularity = Granularity.EXACT


class Meal(BaseModel):
    """A community-shared recipe."""
    id: int
    slug: str
    title: str
    image: Optional[str] = None
    summary: str
    instructions: str
    creator: str
    creator_email: str


class MealCreate(BaseModel):
    """Request model for sharing a meal."""
    title: str = Field(..., min_length=1, max_length=200)
    summary: str = Field(..., min_length=1)
    instructions: str = Field(..., min_length=1)
    creator: str = Field(..., min_length=1)
    creator_email: str = Field(..., min_length=3)
    image: Optional[str] = Field(None, description="Path of an already uploaded image")


class MealList(BaseModel):
    meals: List[Meal]
