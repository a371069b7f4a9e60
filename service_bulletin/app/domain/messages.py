"""
Message board repository.
"""

from typing import Any, Dict, List

from shared.errors import ValidationError
from shared.logging import get_logger
from ..adapters.store import SQLiteStore
from ..caching.cycle import CacheCycle
from ..caching.keys import make_query_key

MESSAGES_TAG = "messages"


class MessageRepository:
    """Reads and writes messages through a request's cache cycle."""

    def __init__(self, store: SQLiteStore, cycle: CacheCycle):
        self.store = store
        self.cycle = cycle
        self.logger = get_logger("bulletin.messages")

    async def get_messages(self) -> List[Dict[str, Any]]:
        """All messages, memoized under the ``messages`` tag."""
        async def _load():
            self.logger.info("Fetching messages from store")
            return await self.store.query("SELECT id, text FROM messages ORDER BY id")

        return await self.cycle.get(make_query_key("all-messages"), [MESSAGES_TAG], _load)

    async def count_messages(self) -> int:
        return len(await self.get_messages())

    async def add_message(self, text: str) -> Dict[str, Any]:
        """Insert a message, then invalidate the ``messages`` scope."""
        text = (text or "").strip()
        if not text:
            raise ValidationError("Message text must not be empty")

        async def _insert():
            result = await self.store.execute("INSERT INTO messages (text) VALUES (?)", (text,))
            return {"id": result.inserted_id, "text": text}

        message = await self.cycle.run_mutation(_insert, tags=[MESSAGES_TAG])
        self.logger.info("Added message", message_id=message["id"])
        return message
