"""
Optimistic mutation coordinator.

Each entity moves through an explicit state machine::

    settled --apply--> pending --settle--> settled
                               --revert--> settled_reverted

The speculative value is always ``reducer(authoritative_value, payload)``;
it is never computed from another speculative value. Only one action per
entity may be pending. A second action is rejected with ``ActionPending``
under the ``reject`` policy, or waits for the first to resolve under the
``queue`` policy.
"""

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Hashable, Iterable, List, NoReturn, Optional, Union, TYPE_CHECKING

from shared.errors import ActionPending, MutationFailed, StoreUnavailable
from shared.logging import get_logger

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


Reducer = Callable[[Any, Any], Any]


class MutationState(str, Enum):
    """Where an entity sits in the optimistic state machine."""
    SETTLED = "settled"
    PENDING = "pending"
    SETTLED_REVERTED = "settled_reverted"


class ConcurrentActionPolicy(str, Enum):
    """What happens to an action on an entity that is already pending."""
    REJECT = "reject"
    QUEUE = "queue"


@dataclass
class EntityState:
    """Coordinator bookkeeping for one entity."""
    entity_id: Hashable
    authoritative: Any
    visible: Any
    status: MutationState = MutationState.SETTLED
    pending: Optional["PendingHandle"] = None
    last_error: Optional[BaseException] = None


class PendingHandle:
    """An applied speculative patch awaiting its authoritative result."""

    def __init__(
        self,
        coordinator: "OptimisticCoordinator",
        entity_id: Hashable,
        payload: Any,
        prior_value: Any,
        speculative_value: Any,
    ):
        self.coordinator = coordinator
        self.entity_id = entity_id
        self.payload = payload
        self.prior_value = prior_value
        self.speculative_value = speculative_value
        self.outcome: Optional[MutationState] = None
        self.result: Any = None
        self.error: Optional[BaseException] = None
        self._resolved = asyncio.Event()

    @property
    def done(self) -> bool:
        return self.outcome is not None

    def settle(self, authoritative_value: Any) -> Any:
        """Confirm with the authoritative value, which replaces the guess."""
        self.coordinator._settle(self, authoritative_value)
        return authoritative_value

    def revert(self, error: Optional[BaseException] = None) -> Any:
        """Discard the patch and restore the authoritative value."""
        return self.coordinator._revert(self, error)

    async def wait(self) -> Any:
        """Wait for settle or revert; returns the value then visible."""
        await self._resolved.wait()
        return self.result

    def _resolve(self, outcome: MutationState, result: Any, error: Optional[BaseException]) -> None:
        self.outcome = outcome
        self.result = result
        self.error = error
        self._resolved.set()

    def __repr__(self) -> str:
        state = self.outcome.value if self.outcome else MutationState.PENDING.value
        return f"PendingHandle(entity_id={self.entity_id!r}, state={state})"


class OptimisticCoordinator:
    """Applies speculative values and reconciles them with authoritative results."""

    def __init__(
        self,
        reducer: Reducer,
        policy: Union[ConcurrentActionPolicy, str] = ConcurrentActionPolicy.REJECT,
        *,
        name: str = "optimistic",
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.reducer = reducer
        self.policy = ConcurrentActionPolicy(policy)
        self.name = name
        self.metrics = metrics
        self.logger = get_logger(f"bulletin_client.{name}")
        self._entities: Dict[Hashable, EntityState] = {}

    def seed(self, entity_id: Hashable, value: Any) -> None:
        """Record the latest authoritative value read from the server.

        While an action is pending the visible speculative value is kept;
        the new value becomes what a revert restores.
        """
        entity = self._entities.get(entity_id)
        if entity is None:
            self._entities[entity_id] = EntityState(entity_id, authoritative=value, visible=value)
            return

        entity.authoritative = value
        if entity.pending is None:
            entity.visible = value
            entity.status = MutationState.SETTLED

    def forget(self, entity_id: Hashable) -> None:
        """Drop a settled entity."""
        entity = self._entities.get(entity_id)
        if entity is not None and entity.pending is not None:
            raise ActionPending(entity_id, "Cannot forget an entity with a pending action")
        self._entities.pop(entity_id, None)

    def __contains__(self, entity_id: Hashable) -> bool:
        return entity_id in self._entities

    def state(self, entity_id: Hashable) -> MutationState:
        return self._entity(entity_id).status

    def visible(self, entity_id: Hashable) -> Any:
        """The value the UI should show right now."""
        return self._entity(entity_id).visible

    def authoritative(self, entity_id: Hashable) -> Any:
        return self._entity(entity_id).authoritative

    def last_error(self, entity_id: Hashable) -> Optional[BaseException]:
        return self._entity(entity_id).last_error

    def is_pending(self, entity_id: Hashable) -> bool:
        return self._entity(entity_id).pending is not None

    def pending_handle(self, entity_id: Hashable) -> Optional[PendingHandle]:
        return self._entity(entity_id).pending

    def project(self, items: Iterable[Any], key: Callable[[Any], Hashable]) -> List[Any]:
        """Replace each known item with its entity's visible value."""
        projected = []
        for item in items:
            entity = self._entities.get(key(item))
            projected.append(entity.visible if entity is not None else item)
        return projected

    def apply(self, entity_id: Hashable, payload: Any = None) -> PendingHandle:
        """Move a settled entity to pending with a speculative value.

        Reducer errors propagate unchanged and leave the entity untouched.
        """
        entity = self._entity(entity_id)
        if entity.pending is not None:
            self.logger.info("Rejected action on pending entity", entity_id=entity_id)
            self._count("rejected")
            raise ActionPending(entity_id)

        speculative = self.reducer(entity.authoritative, payload)

        handle = PendingHandle(self, entity_id, payload, entity.authoritative, speculative)
        entity.visible = speculative
        entity.status = MutationState.PENDING
        entity.pending = handle
        entity.last_error = None

        self.logger.debug("Applied optimistic patch", entity_id=entity_id)
        return handle

    async def run(
        self,
        entity_id: Hashable,
        payload: Any,
        mutation: Callable[[], Awaitable[Any]],
    ) -> Any:
        """Apply, issue the authoritative mutation, then settle or revert.

        Returns the authoritative value. On failure the entity is reverted and
        ``MutationFailed`` (or ``StoreUnavailable`` for an unreachable server)
        is raised. If the caller is cancelled the mutation keeps running and
        the entity still settles or reverts when it completes.
        """
        if self.policy is ConcurrentActionPolicy.QUEUE:
            while True:
                pending = self._entity(entity_id).pending
                if pending is None:
                    break
                self.logger.debug("Queued action behind pending entity", entity_id=entity_id)
                await pending.wait()

        handle = self.apply(entity_id, payload)
        try:
            task = asyncio.ensure_future(mutation())
        except Exception as exc:
            # Never started: nothing will reconcile the handle later.
            handle.revert(exc)
            self._raise_failure(exc, entity_id)
        task.add_done_callback(lambda done: self._reconcile(handle, done))

        try:
            await asyncio.shield(task)
        except asyncio.CancelledError:
            if not task.done():
                self.logger.info("Caller abandoned optimistic action; awaiting result", entity_id=entity_id)
            raise
        except Exception as exc:
            self._raise_failure(exc, entity_id)

        return handle.result

    @staticmethod
    def _raise_failure(exc: Exception, entity_id: Hashable) -> NoReturn:
        if isinstance(exc, (MutationFailed, StoreUnavailable)):
            if getattr(exc, "entity_id", None) is None:
                exc.entity_id = entity_id
                exc.details.setdefault("entity_id", entity_id)
            raise exc
        raise MutationFailed(str(exc) or "Mutation failed", entity_id=entity_id) from exc

    def _reconcile(self, handle: PendingHandle, task: "asyncio.Future") -> None:
        if handle.done:
            return
        if task.cancelled():
            handle.revert(asyncio.CancelledError())
            return
        error = task.exception()
        if error is not None:
            handle.revert(error)
        else:
            handle.settle(task.result())

    def _settle(self, handle: PendingHandle, authoritative_value: Any) -> None:
        entity = self._resolving(handle)
        entity.authoritative = authoritative_value
        entity.visible = authoritative_value
        entity.status = MutationState.SETTLED
        entity.pending = None

        self._count("settled")
        self.logger.debug(
            "Settled optimistic patch",
            entity_id=handle.entity_id,
            matched_guess=authoritative_value == handle.speculative_value,
        )
        handle._resolve(MutationState.SETTLED, authoritative_value, None)

    def _revert(self, handle: PendingHandle, error: Optional[BaseException]) -> Any:
        entity = self._resolving(handle)
        entity.visible = entity.authoritative
        entity.status = MutationState.SETTLED_REVERTED
        entity.pending = None
        entity.last_error = error

        self._count("reverted")
        self.logger.warning(
            "Reverted optimistic patch",
            entity_id=handle.entity_id,
            error=str(error) if error is not None else None,
        )
        handle._resolve(MutationState.SETTLED_REVERTED, entity.authoritative, error)
        return entity.authoritative

    def _resolving(self, handle: PendingHandle) -> EntityState:
        entity = self._entities.get(handle.entity_id)
        if handle.done or entity is None or entity.pending is not handle:
            raise RuntimeError(f"{handle!r} is already resolved")
        return entity

    def _entity(self, entity_id: Hashable) -> EntityState:
        try:
            return self._entities[entity_id]
        except KeyError:
            raise KeyError(f"Unknown entity {entity_id!r}; seed it first") from None

    def _count(self, outcome: str) -> None:
        if self.metrics:
            self.metrics.increment_counter("optimistic_outcomes_total", outcome=outcome)
