"""
Client package for the Bulletin Service.

- client: httpx client for the service's HTTP API
- optimistic: per-entity optimistic mutation coordinator
- reducers: pure speculative reducers (like toggle)
- feed: post feed view wiring the coordinator to the client
"""

from .client import BulletinClient
from .feed import LikeFeed
from .optimistic import ConcurrentActionPolicy, MutationState, OptimisticCoordinator, PendingHandle
from .reducers import toggle_like

__all__ = [
    "BulletinClient",
    "ConcurrentActionPolicy",
    "LikeFeed",
    "MutationState",
    "OptimisticCoordinator",
    "PendingHandle",
    "toggle_like",
]
