"""
Community meals repository.

Every meal read carries the ``meals`` tag, so sharing a meal refreshes the
grid and any earlier lookup of the new slug in one exact invalidation.
"""

import html
from typing import Any, Dict, List, Optional

from shared.errors import NotFoundError, ValidationError
from shared.logging import get_logger
from ..adapters.store import SQLiteStore
from ..caching.cycle import CacheCycle
from ..caching.keys import make_query_key, scope
from .news import slugify

MEALS_TAG = "meals"

MEAL_COLUMNS = "id, slug, title, image, summary, instructions, creator, creator_email"


def meal_scope(slug: str) -> str:
    return scope(MEALS_TAG, slug)


def sanitize_instructions(instructions: str) -> str:
    """Escape markup so stored instructions render as text."""
    return html.escape(instructions, quote=True)


class MealRepository:
    """Reads and shares meals through a request's cache cycle."""

    def __init__(self, store: SQLiteStore, cycle: CacheCycle):
        self.store = store
        self.cycle = cycle
        self.logger = get_logger("bulletin.meals")

    async def get_all_meals(self) -> List[Dict[str, Any]]:
        async def _load():
            self.logger.info("Fetching meals from store")
            return await self.store.query(f"SELECT {MEAL_COLUMNS} FROM meals ORDER BY id")

        return await self.cycle.get(make_query_key("all-meals"), [MEALS_TAG], _load)

    async def get_meal(self, slug: str) -> Dict[str, Any]:
        async def _load():
            return await self.store.query_one(f"SELECT {MEAL_COLUMNS} FROM meals WHERE slug = ?", (slug,))

        meal = await self.cycle.get(make_query_key("meal", slug), [MEALS_TAG, meal_scope(slug)], _load)
        if meal is None:
            raise NotFoundError(f"Meal {slug} not found", details={"slug": slug})
        return meal

    async def save_meal(
        self,
        title: str,
        summary: str,
        instructions: str,
        creator: str,
        creator_email: str,
        image: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Share a meal under a slug derived from its title.

        Instructions are stored escaped. A title whose slug is taken fails
        with ``MutationFailed``.
        """
        fields = {
            "title": title,
            "summary": summary,
            "instructions": instructions,
            "creator": creator,
        }
        blank = sorted(name for name, value in fields.items() if not (value or "").strip())
        if blank:
            raise ValidationError("Meal fields must not be empty", details={"fields": blank})
        if "@" not in (creator_email or ""):
            raise ValidationError("Invalid creator email", details={"creator_email": creator_email})

        meal = {
            "slug": slugify(title, fallback="meal"),
            "title": title.strip(),
            "image": image,
            "summary": summary.strip(),
            "instructions": sanitize_instructions(instructions),
            "creator": creator.strip(),
            "creator_email": creator_email.strip(),
        }

        async def _insert():
            result = await self.store.execute(
                "INSERT INTO meals (slug, title, image, summary, instructions, creator, creator_email) "
                "VALUES (:slug, :title, :image, :summary, :instructions, :creator, :creator_email)",
                meal,
            )
            return {"id": result.inserted_id, **meal}

        saved = await self.cycle.run_mutation(_insert, tags=[MEALS_TAG])
        self.logger.info("Shared meal", meal_id=saved["id"], slug=saved["slug"])
        return saved
