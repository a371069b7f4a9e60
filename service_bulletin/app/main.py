"""
Bulletin service: message board, post feed, news archive and meals.
"""

from contextlib import asynccontextmanager
from typing import Dict, Optional

from fastapi import Depends, FastAPI, Header, Query, Request, Response

from shared.base_service import BaseService
from shared.errors import ValidationError
from shared.logging import clear_context, set_cycle_id, set_request_id
from .adapters.store import SQLiteStore
from .caching.cycle import CacheCycle, CacheCycleFactory
from .caching.invalidation import InvalidationController
from .domain.meals import MealRepository
from .domain.messages import MessageRepository
from .domain.news import NewsRepository
from .domain.posts import PostRepository
from .domain.schema import init_store
from .models import (
    ArchivePage,
    InvalidateRequest,
    LikeStatus,
    Meal,
    MealCreate,
    MealList,
    Message,
    MessageCreate,
    MessageList,
    NewsCreate,
    NewsItem,
    NewsList,
    Post,
    PostList,
)


def get_cycle(request: Request) -> CacheCycle:
    """The cache cycle opened for this request."""
    return request.state.cache_cycle


class BulletinService(BaseService):
    """Bulletin service implementation."""

    def __init__(self, **config_overrides):
        super().__init__("bulletin", 8000, **config_overrides)
        self.store = SQLiteStore(self.config.database_path)
        self.invalidation = InvalidationController(metrics=self.metrics)
        self.cycles = CacheCycleFactory(
            self.invalidation,
            mode=self.config.cache_mode,
            ttl_seconds=self.config.cache_ttl_seconds,
            metrics=self.metrics,
        )
        self._store_ready = False

        self._setup_cycle_middleware()
        self._setup_bulletin_routes()

    @asynccontextmanager
    async def _lifespan(self, app: FastAPI):
        await self._ensure_store()
        yield
        await self.store.close()

    async def _ensure_store(self) -> None:
        if not self._store_ready:
            await init_store(self.store, seed=self.config.seed_demo_data)
            self._store_ready = True

    async def _check_dependencies(self) -> Dict[str, str]:
        await self.store.query_one("SELECT 1 AS ok")
        return {"store": "ok"}

    def _setup_cycle_middleware(self):
        """Open one cache cycle per request and close it after the response."""

        @self.app.middleware("http")
        async def cache_cycle(request: Request, call_next):
            request_id = set_request_id(request.headers.get("X-Request-Id"))
            await self._ensure_store()

            cycle = self.cycles.open()
            set_cycle_id(cycle.cycle_id)
            request.state.cache_cycle = cycle
            try:
                response = await call_next(request)
            finally:
                cycle.close()
                clear_context()

            response.headers["X-Request-Id"] = request_id
            return response

    def _viewer_id(self, x_user_id: Optional[str]) -> int:
        if x_user_id is None:
            return self.config.default_user_id
        if not x_user_id.isdigit():
            raise ValidationError("X-User-Id must be a numeric user id", details={"x_user_id": x_user_id})
        return int(x_user_id)

    def _setup_bulletin_routes(self):
        """Set up message, post, news and cache routes."""

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": "bulletin",
                "message": "Bulletin Service",
                "version": "1.0.0",
                "cache_mode": self.cycles.mode.value,
            }

        @self.app.get("/messages", response_model=MessageList)
        async def list_messages(cycle: CacheCycle = Depends(get_cycle)):
            """All messages."""
            repo = MessageRepository(self.store, cycle)
            messages = await repo.get_messages()
            # Second read in the same cycle is served from the cycle's pin.
            total = await repo.count_messages()
            return {"messages": messages, "total": total}

        @self.app.post("/messages", response_model=Message, status_code=201)
        async def create_message(body: MessageCreate, cycle: CacheCycle = Depends(get_cycle)):
            """Post a message; invalidates the message list."""
            return await MessageRepository(self.store, cycle).add_message(body.text)

        @self.app.get("/posts", response_model=PostList)
        async def list_posts(
            cycle: CacheCycle = Depends(get_cycle),
            max_number: Optional[int] = Query(None, ge=1, alias="max"),
            x_user_id: Optional[str] = Header(None),
        ):
            """Feed of posts for the viewer."""
            repo = PostRepository(self.store, cycle, self._viewer_id(x_user_id))
            return {"posts": await repo.get_posts(max_number)}

        @self.app.get("/posts/{post_id}", response_model=Post)
        async def get_post(
            post_id: int,
            cycle: CacheCycle = Depends(get_cycle),
            x_user_id: Optional[str] = Header(None),
        ):
            repo = PostRepository(self.store, cycle, self._viewer_id(x_user_id))
            return await repo.get_post(post_id)

        @self.app.post("/posts/{post_id}/like", response_model=LikeStatus)
        async def toggle_like(
            post_id: int,
            cycle: CacheCycle = Depends(get_cycle),
            x_user_id: Optional[str] = Header(None),
        ):
            """Authoritative like toggle used by optimistic clients."""
            repo = PostRepository(self.store, cycle, self._viewer_id(x_user_id))
            return await repo.toggle_like_status(post_id)

        @self.app.get("/news", response_model=NewsList)
        async def list_news(cycle: CacheCycle = Depends(get_cycle)):
            return {"news": await NewsRepository(self.store, cycle).get_all_news()}

        @self.app.get("/news/latest", response_model=NewsList)
        async def latest_news(
            cycle: CacheCycle = Depends(get_cycle),
            limit: int = Query(3, ge=1, le=50),
        ):
            return {"news": await NewsRepository(self.store, cycle).get_latest_news(limit)}

        @self.app.get("/news/{slug}", response_model=NewsItem)
        async def get_news_item(slug: str, cycle: CacheCycle = Depends(get_cycle)):
            return await NewsRepository(self.store, cycle).get_news_item(slug)

        @self.app.post("/news", response_model=NewsItem, status_code=201)
        async def publish_news(body: NewsCreate, cycle: CacheCycle = Depends(get_cycle)):
            """Publish a news item; invalidates news and the item's archive year."""
            return await NewsRepository(self.store, cycle).add_news(
                body.title, body.content, body.date, slug=body.slug, image=body.image
            )

        @self.app.delete("/news/{news_id}", status_code=204)
        async def delete_news(news_id: int, cycle: CacheCycle = Depends(get_cycle)):
            await NewsRepository(self.store, cycle).delete_news(news_id)
            return Response(status_code=204)

        @self.app.get("/archive", response_model=ArchivePage)
        async def archive(cycle: CacheCycle = Depends(get_cycle)):
            return await NewsRepository(self.store, cycle).get_archive()

        @self.app.get("/archive/{year}", response_model=ArchivePage)
        async def archive_year(year: str, cycle: CacheCycle = Depends(get_cycle)):
            return await NewsRepository(self.store, cycle).get_archive(year)

        @self.app.get("/archive/{year}/{month}", response_model=ArchivePage)
        async def archive_month(year: str, month: str, cycle: CacheCycle = Depends(get_cycle)):
            return await NewsRepository(self.store, cycle).get_archive(year, month)

        @self.app.get("/meals", response_model=MealList)
        async def list_meals(cycle: CacheCycle = Depends(get_cycle)):
            return {"meals": await MealRepository(self.store, cycle).get_all_meals()}

        @self.app.get("/meals/{slug}", response_model=Meal)
        async def get_meal(slug: str, cycle: CacheCycle = Depends(get_cycle)):
            return await MealRepository(self.store, cycle).get_meal(slug)

        @self.app.post("/meals", response_model=Meal, status_code=201)
        async def share_meal(body: MealCreate, cycle: CacheCycle = Depends(get_cycle)):
            """Share a meal; invalidates the meals grid."""
            return await MealRepository(self.store, cycle).save_meal(
                body.title,
                body.summary,
                body.instructions,
                body.creator,
                body.creator_email,
                image=body.image,
            )

        @self.app.post("/cache/invalidate")
        async def invalidate_cache(body: InvalidateRequest, cycle: CacheCycle = Depends(get_cycle)):
            """Invalidate scopes after writes made outside this service."""
            try:
                dropped = cycle.on_mutation_success(body.tags, body.granularity)
            except ValueError as e:
                raise ValidationError(str(e), details={"tags": body.tags}) from e
            return {
                "tags": body.tags,
                "granularity": body.granularity.value,
                "dropped": dropped,
            }

        @self.app.get("/cache/stats")
        async def cache_stats():
            return self.cycles.stats()


def create_app(**config_overrides):
    """Create FastAPI application."""
    service = BulletinService(**config_overrides)
    return service.app


if __name__ == "__main__":
    service = BulletinService()
    service.run()
