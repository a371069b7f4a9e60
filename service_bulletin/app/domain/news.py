"""
News and archive repository.

Archive reads are tagged with nested scopes (``archive``, ``archive/2024``,
``archive/2024/05``) so a publish can invalidate one year's subtree without
touching unrelated reads.
"""

import datetime
import re
from typing import Any, Dict, List, Optional, Union

from shared.errors import NotFoundError, ValidationError
from shared.logging import get_logger
from ..adapters.store import SQLiteStore
from ..caching.cycle import CacheCycle
from ..caching.keys import make_query_key, scope

NEWS_TAG = "news"
ARCHIVE_TAG = "archive"

NEWS_COLUMNS = "id, slug, title, content, date, image"


def archive_scope(year: Optional[str] = None, month: Optional[str] = None) -> str:
    """Scope tag for the archive, a year, or a year and month."""
    parts = [ARCHIVE_TAG]
    if year is not None:
        parts.append(year)
    if month is not None:
        parts.append(month)
    return scope(*parts)


def normalize_year(year: Union[str, int]) -> str:
    year = str(year).strip()
    if not re.fullmatch(r"\d{4}", year):
        raise ValidationError(f"Invalid filter: Year {year} is not a year.", details={"year": year})
    return year


def normalize_month(month: Union[str, int]) -> str:
    month = str(month).strip()
    if not month.isdigit() or not 1 <= int(month) <= 12:
        raise ValidationError(f"Invalid filter: Month {month} is not a month.", details={"month": month})
    return f"{int(month):02d}"


def slugify(title: str, fallback: str = "news") -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", title.lower()).strip("-")
    return slug or fallback


class NewsRepository:
    """Reads and publishes news through a request's cache cycle."""

    def __init__(self, store: SQLiteStore, cycle: CacheCycle):
        self.store = store
        self.cycle = cycle
        self.logger = get_logger("bulletin.news")

    async def get_all_news(self) -> List[Dict[str, Any]]:
        async def _load():
            return await self.store.query(f"SELECT {NEWS_COLUMNS} FROM news ORDER BY date DESC")

        return await self.cycle.get(make_query_key("all-news"), [NEWS_TAG], _load)

    async def get_latest_news(self, limit: int = 3) -> List[Dict[str, Any]]:
        async def _load():
            return await self.store.query(
                f"SELECT {NEWS_COLUMNS} FROM news ORDER BY date DESC LIMIT ?", (limit,)
            )

        return await self.cycle.get(make_query_key("latest-news", limit), [NEWS_TAG], _load)

    async def get_news_item(self, slug: str) -> Dict[str, Any]:
        """A single item by slug (or numeric id)."""
        async def _load():
            return await self.store.query_one(
                f"SELECT {NEWS_COLUMNS} FROM news WHERE slug = ? OR CAST(id AS TEXT) = ?",
                (slug, slug),
            )

        item = await self.cycle.get(
            make_query_key("news-item", slug), [NEWS_TAG, scope(NEWS_TAG, slug)], _load
        )
        if item is None:
            raise NotFoundError(f"News item {slug} not found", details={"slug": slug})
        return item

    async def get_available_years(self) -> List[str]:
        async def _load():
            rows = await self.store.query(
                "SELECT DISTINCT strftime('%Y', date) AS year FROM news ORDER BY year DESC"
            )
            return [row["year"] for row in rows]

        return await self.cycle.get(make_query_key("news-years"), [archive_scope()], _load)

    async def get_available_months(self, year: Union[str, int]) -> List[str]:
        year = normalize_year(year)

        async def _load():
            rows = await self.store.query(
                "SELECT DISTINCT strftime('%m', date) AS month FROM news "
                "WHERE strftime('%Y', date) = ? ORDER BY month DESC",
                (year,),
            )
            return [row["month"] for row in rows]

        return await self.cycle.get(make_query_key("news-months", year), [archive_scope(year)], _load)

    async def get_news_for_year(self, year: Union[str, int]) -> List[Dict[str, Any]]:
        year = normalize_year(year)

        async def _load():
            return await self.store.query(
                f"SELECT {NEWS_COLUMNS} FROM news WHERE strftime('%Y', date) = ? ORDER BY date DESC",
                (year,),
            )

        return await self.cycle.get(make_query_key("news-for-year", year), [archive_scope(year)], _load)

    async def get_news_for_year_and_month(
        self, year: Union[str, int], month: Union[str, int]
    ) -> List[Dict[str, Any]]:
        year = normalize_year(year)
        month = normalize_month(month)

        async def _load():
            return await self.store.query(
                f"SELECT {NEWS_COLUMNS} FROM news "
                "WHERE strftime('%Y', date) = ? AND strftime('%m', date) = ? ORDER BY date DESC",
                (year, month),
            )

        return await self.cycle.get(
            make_query_key("news-for-year-and-month", year, month),
            [archive_scope(year, month)],
            _load,
        )

    async def get_archive(
        self, year: Optional[Union[str, int]] = None, month: Optional[Union[str, int]] = None
    ) -> Dict[str, Any]:
        """Navigation links and news for an archive filter.

        No filter lists the years, a year lists its months and news, a year
        and month lists that month's news. Filters naming a period with no
        news are rejected.
        """
        if month is not None and year is None:
            raise ValidationError("Invalid filter: Month given without a year.")

        years = await self.get_available_years()
        if year is None:
            return {"year": None, "month": None, "links": years, "news": []}

        year = normalize_year(year)
        months = await self.get_available_months(year) if year in years else []
        month = normalize_month(month) if month is not None else None

        if year not in years or (month is not None and month not in months):
            raise ValidationError(
                f"Invalid filter: Year {year} or Month {month} does not exist.",
                details={"year": year, "month": month},
            )

        if month is None:
            return {
                "year": year,
                "month": None,
                "links": months,
                "news": await self.get_news_for_year(year),
            }

        return {
            "year": year,
            "month": month,
            "links": [],
            "news": await self.get_news_for_year_and_month(year, month),
        }

    async def add_news(
        self,
        title: str,
        content: str,
        date: datetime.date,
        slug: Optional[str] = None,
        image: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Publish an item; invalidates the news list, the year list and the item's year subtree."""
        slug = slug or slugify(title)
        year = normalize_year(date.year)

        async def _insert():
            result = await self.store.execute(
                "INSERT INTO news (slug, title, content, date, image) VALUES (?, ?, ?, ?, ?)",
                (slug, title, content, date.isoformat(), image),
            )
            return {
                "id": result.inserted_id,
                "slug": slug,
                "title": title,
                "content": content,
                "date": date.isoformat(),
                "image": image,
            }

        item = await self.cycle.run_mutation(
            _insert,
            tags=[NEWS_TAG, archive_scope()],
            subtree_tags=[archive_scope(year)],
        )
        self.logger.info("Published news item", news_id=item["id"], slug=slug)
        return item

    async def delete_news(self, news_id: int) -> None:
        """Remove an item, invalidating the news and archive subtrees."""
        async def _delete():
            result = await self.store.execute("DELETE FROM news WHERE id = ?", (news_id,))
            return result.rowcount

        removed = await self.cycle.run_mutation(
            _delete,
            subtree_tags=[NEWS_TAG, archive_scope()],
        )
        if removed == 0:
            raise NotFoundError(f"News item {news_id} not found", details={"news_id": news_id})
        self.logger.info("Deleted news item", news_id=news_id)
