"""
Post feed with optimistic like toggling.
"""

from typing import Any, Dict, List, Optional, Union, TYPE_CHECKING

from shared.config import BaseConfig
from shared.logging import get_logger
from .client import BulletinClient
from .optimistic import ConcurrentActionPolicy, OptimisticCoordinator
from .reducers import toggle_like

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


class LikeFeed:
    """The feed as the UI sees it.

    ``toggle`` shows the flipped like immediately, then replaces it with the
    server's answer, or restores the previous state if the server refuses.
    """

    def __init__(
        self,
        client: BulletinClient,
        policy: Union[ConcurrentActionPolicy, str] = ConcurrentActionPolicy.REJECT,
        *,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.client = client
        self.coordinator = OptimisticCoordinator(toggle_like, policy, name="likes", metrics=metrics)
        self.logger = get_logger("bulletin_client.feed")
        self._order: List[int] = []

    @classmethod
    def from_config(cls, config: BaseConfig, **kwargs) -> "LikeFeed":
        """Feed over a client for ``config.service_url`` using ``config.optimistic_policy``."""
        metrics = kwargs.pop("metrics", None)
        return cls(BulletinClient.from_config(config, **kwargs), config.optimistic_policy, metrics=metrics)

    async def refresh(self) -> List[Dict[str, Any]]:
        """Reload the feed and seed every post's authoritative state."""
        posts = await self.client.get_posts()
        self._order = [post["id"] for post in posts]
        for post in posts:
            self.coordinator.seed(post["id"], post)
        self.logger.debug("Refreshed feed", posts=len(posts))
        return self.visible_posts()

    def visible_posts(self) -> List[Dict[str, Any]]:
        return [self.coordinator.visible(post_id) for post_id in self._order]

    def visible(self, post_id: int) -> Dict[str, Any]:
        return self.coordinator.visible(post_id)

    async def toggle(self, post_id: int) -> Dict[str, Any]:
        """Optimistically toggle the like on ``post_id``; returns the settled post."""
        async def _mutation():
            status = await self.client.toggle_like(post_id)
            settled = dict(self.coordinator.authoritative(post_id))
            settled["is_liked"] = status["is_liked"]
            settled["likes"] = status["likes"]
            return settled

        return await self.coordinator.run(post_id, None, _mutation)
