"""
Post feed repository with the authoritative like toggle.
"""

import sqlite3
from typing import Any, Dict, List, Optional

from shared.errors import NotFoundError
from shared.logging import get_logger
from ..adapters.store import SQLiteStore
from ..caching.cycle import CacheCycle
from ..caching.keys import make_query_key, scope

POSTS_TAG = "posts"

POSTS_QUERY = """
SELECT
    posts.id AS id,
    posts.image_url AS image,
    posts.title AS title,
    posts.content AS content,
    posts.created_at AS created_at,
    users.first_name AS user_first_name,
    users.last_name AS user_last_name,
    (SELECT COUNT(*) FROM likes WHERE likes.post_id = posts.id) AS likes,
    EXISTS (
        SELECT 1 FROM likes WHERE likes.post_id = posts.id AND likes.user_id = :viewer_id
    ) AS is_liked
FROM posts
INNER JOIN users ON posts.user_id = users.id
"""


def post_scope(post_id: int) -> str:
    """Tag covering everything cached about one post."""
    return scope(POSTS_TAG, post_id)


def toggle_like_row(conn: sqlite3.Connection, viewer_id: int, post_id: int) -> Dict[str, Any]:
    """Flip one like row and count the post's likes on the same connection."""
    removed = conn.execute(
        "DELETE FROM likes WHERE user_id = ? AND post_id = ?",
        (viewer_id, post_id),
    ).rowcount
    if removed == 0:
        conn.execute(
            "INSERT INTO likes (user_id, post_id) VALUES (?, ?)",
            (viewer_id, post_id),
        )
    likes = conn.execute(
        "SELECT COUNT(*) FROM likes WHERE post_id = ?",
        (post_id,),
    ).fetchone()[0]
    return {"id": post_id, "is_liked": removed == 0, "likes": likes}


def _normalize(row: Dict[str, Any]) -> Dict[str, Any]:
    row["is_liked"] = bool(row["is_liked"])
    return row


class PostRepository:
    """Feed reads for one viewer plus the like toggle mutation."""

    def __init__(self, store: SQLiteStore, cycle: CacheCycle, viewer_id: int):
        self.store = store
        self.cycle = cycle
        self.viewer_id = viewer_id
        self.logger = get_logger("bulletin.posts")

    async def get_posts(self, max_number: Optional[int] = None) -> List[Dict[str, Any]]:
        """Newest-first feed, tagged with the feed scope and every post's scope."""
        async def _load():
            statement = POSTS_QUERY + " ORDER BY posts.created_at DESC"
            params: Dict[str, Any] = {"viewer_id": self.viewer_id}
            if max_number is not None:
                statement += " LIMIT :limit"
                params["limit"] = max_number
            rows = await self.store.query(statement, params)
            return [_normalize(row) for row in rows]

        key = make_query_key("posts", viewer=self.viewer_id, limit=max_number)
        # Post ids are only known after the load, so the feed is tagged with the
        # feed scope; single-post reads carry their own post scope.
        return await self.cycle.get(key, [POSTS_TAG], _load)

    async def get_post(self, post_id: int) -> Dict[str, Any]:
        async def _load():
            row = await self.store.query_one(
                POSTS_QUERY + " WHERE posts.id = :post_id",
                {"viewer_id": self.viewer_id, "post_id": post_id},
            )
            return _normalize(row) if row is not None else None

        key = make_query_key("post", post_id, viewer=self.viewer_id)
        post = await self.cycle.get(key, [post_scope(post_id)], _load)
        if post is None:
            raise NotFoundError(f"Post {post_id} not found", details={"post_id": post_id})
        return post

    async def toggle_like_status(self, post_id: int) -> Dict[str, Any]:
        """Flip the viewer's like on a post and return the authoritative state.

        The delete, insert and recount commit as one transaction, so a
        failure leaves storage untouched. Invalidates the feed scope and the
        post's subtree. A post that does not exist fails the foreign key and
        surfaces as ``MutationFailed``.
        """
        async def _toggle():
            return await self.store.transaction(
                lambda conn: toggle_like_row(conn, self.viewer_id, post_id),
                label="toggle_like",
            )

        status = await self.cycle.run_mutation(
            _toggle,
            tags=[POSTS_TAG],
            subtree_tags=[post_scope(post_id)],
        )
        self.logger.info(
            "Toggled post like",
            post_id=post_id,
            viewer_id=self.viewer_id,
            is_liked=status["is_liked"],
            likes=status["likes"],
        )
        return status
