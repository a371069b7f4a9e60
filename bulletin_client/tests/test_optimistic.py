"""
Unit tests for the optimistic mutation coordinator.
"""

import asyncio

import pytest
from prometheus_client import CollectorRegistry

from bulletin_client.optimistic import ConcurrentActionPolicy, MutationState, OptimisticCoordinator
from bulletin_client.reducers import toggle_like
from shared.errors import ActionPending, MutationFailed, StoreUnavailable
from shared.metrics import MetricsCollector


POST = {"id": 1, "is_liked": False, "likes": 10}


class GatedMutation:
    """Authoritative call that completes when the test decides."""

    def __init__(self):
        self.future = asyncio.get_running_loop().create_future()
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        return await self.future


@pytest.fixture
def coordinator():
    coordinator = OptimisticCoordinator(toggle_like, name="likes")
    coordinator.seed(1, dict(POST))
    return coordinator


class TestOptimisticCoordinator:
    """Test cases for OptimisticCoordinator."""

    @pytest.mark.asyncio
    async def test_confirmed_toggle(self, coordinator):
        """Liking shows the guess at once and keeps it when the server agrees."""
        mutation = GatedMutation()

        running = asyncio.ensure_future(coordinator.run(1, None, mutation))
        await asyncio.sleep(0)

        assert coordinator.state(1) is MutationState.PENDING
        assert coordinator.visible(1) == {"id": 1, "is_liked": True, "likes": 11}
        assert coordinator.authoritative(1) == POST

        mutation.future.set_result({"id": 1, "is_liked": True, "likes": 11})
        result = await running

        assert result == {"id": 1, "is_liked": True, "likes": 11}
        assert coordinator.state(1) is MutationState.SETTLED
        assert coordinator.visible(1) == {"id": 1, "is_liked": True, "likes": 11}
        assert not coordinator.is_pending(1)

    @pytest.mark.asyncio
    async def test_failed_toggle_reverts(self, coordinator):
        """A rejected like restores the previous state and tells the caller."""
        mutation = GatedMutation()

        running = asyncio.ensure_future(coordinator.run(1, None, mutation))
        await asyncio.sleep(0)
        assert coordinator.visible(1) == {"id": 1, "is_liked": True, "likes": 11}

        mutation.future.set_exception(MutationFailed("post is gone"))

        with pytest.raises(MutationFailed) as exc_info:
            await running

        assert exc_info.value.entity_id == 1
        assert coordinator.visible(1) == POST
        assert coordinator.state(1) is MutationState.SETTLED_REVERTED
        assert isinstance(coordinator.last_error(1), MutationFailed)

    @pytest.mark.asyncio
    async def test_authoritative_value_wins_over_guess(self, coordinator):
        async def mutation():
            return {"id": 1, "is_liked": True, "likes": 15}

        await coordinator.run(1, None, mutation)

        assert coordinator.visible(1)["likes"] == 15
        assert coordinator.authoritative(1)["likes"] == 15

    @pytest.mark.asyncio
    async def test_unreachable_server_reverts_with_store_unavailable(self, coordinator):
        async def mutation():
            raise StoreUnavailable("timeout")

        with pytest.raises(StoreUnavailable) as exc_info:
            await coordinator.run(1, None, mutation)

        assert exc_info.value.entity_id == 1
        assert coordinator.visible(1) == POST

    @pytest.mark.asyncio
    async def test_unexpected_error_wrapped_in_mutation_failed(self, coordinator):
        async def mutation():
            raise RuntimeError("boom")

        with pytest.raises(MutationFailed) as exc_info:
            await coordinator.run(1, None, mutation)

        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert exc_info.value.details["entity_id"] == 1
        assert coordinator.state(1) is MutationState.SETTLED_REVERTED

    @pytest.mark.asyncio
    async def test_mutation_raising_before_await_reverts(self, coordinator):
        def mutation():
            raise RuntimeError("no connection")

        with pytest.raises(MutationFailed) as exc_info:
            await coordinator.run(1, None, mutation)

        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert exc_info.value.entity_id == 1
        assert coordinator.state(1) is MutationState.SETTLED_REVERTED
        assert coordinator.visible(1) == POST
        assert not coordinator.is_pending(1)

        async def retry():
            return {"id": 1, "is_liked": True, "likes": 11}

        assert await coordinator.run(1, None, retry) == {"id": 1, "is_liked": True, "likes": 11}

    @pytest.mark.asyncio
    async def test_non_awaitable_mutation_reverts(self, coordinator):
        with pytest.raises(MutationFailed):
            await coordinator.run(1, None, lambda: None)

        assert coordinator.state(1) is MutationState.SETTLED_REVERTED
        assert coordinator.visible(1) == POST

    @pytest.mark.asyncio
    async def test_store_unavailable_raised_before_await_keeps_type(self, coordinator):
        def mutation():
            raise StoreUnavailable("Bulletin service unreachable")

        with pytest.raises(StoreUnavailable) as exc_info:
            await coordinator.run(1, None, mutation)

        assert exc_info.value.details["entity_id"] == 1
        assert coordinator.visible(1) == POST

    @pytest.mark.asyncio
    async def test_second_action_rejected_while_pending(self, coordinator):
        mutation = GatedMutation()
        running = asyncio.ensure_future(coordinator.run(1, None, mutation))
        await asyncio.sleep(0)

        second = GatedMutation()
        with pytest.raises(ActionPending):
            await coordinator.run(1, None, second)

        assert second.calls == 0
        assert coordinator.visible(1) == {"id": 1, "is_liked": True, "likes": 11}

        mutation.future.set_result({"id": 1, "is_liked": True, "likes": 11})
        await running

    @pytest.mark.asyncio
    async def test_queue_policy_builds_on_first_result(self):
        coordinator = OptimisticCoordinator(toggle_like, ConcurrentActionPolicy.QUEUE)
        coordinator.seed(1, dict(POST))
        first_mutation = GatedMutation()
        second_mutation = GatedMutation()

        first = asyncio.ensure_future(coordinator.run(1, None, first_mutation))
        await asyncio.sleep(0)
        second = asyncio.ensure_future(coordinator.run(1, None, second_mutation))
        await asyncio.sleep(0)

        assert second_mutation.calls == 0

        first_mutation.future.set_result({"id": 1, "is_liked": True, "likes": 12})
        await first
        for _ in range(3):
            await asyncio.sleep(0)

        assert coordinator.is_pending(1)
        assert coordinator.visible(1) == {"id": 1, "is_liked": False, "likes": 11}

        second_mutation.future.set_result({"id": 1, "is_liked": False, "likes": 11})
        assert await second == {"id": 1, "is_liked": False, "likes": 11}
        assert coordinator.state(1) is MutationState.SETTLED

    @pytest.mark.asyncio
    async def test_cancelled_caller_still_reconciles(self, coordinator):
        mutation = GatedMutation()
        running = asyncio.ensure_future(coordinator.run(1, None, mutation))
        await asyncio.sleep(0)
        handle = coordinator.pending_handle(1)

        running.cancel()
        with pytest.raises(asyncio.CancelledError):
            await running
        assert coordinator.is_pending(1)

        mutation.future.set_result({"id": 1, "is_liked": True, "likes": 11})
        await handle.wait()

        assert handle.outcome is MutationState.SETTLED
        assert coordinator.state(1) is MutationState.SETTLED
        assert coordinator.visible(1)["likes"] == 11

    @pytest.mark.asyncio
    async def test_reducer_error_propagates_unchanged(self):
        coordinator = OptimisticCoordinator(toggle_like)
        coordinator.seed(1, {"id": 1, "is_liked": "yes", "likes": 1})
        mutation = GatedMutation()

        with pytest.raises(TypeError):
            await coordinator.run(1, None, mutation)

        assert mutation.calls == 0
        assert coordinator.state(1) is MutationState.SETTLED

    def test_manual_settle_and_double_resolution(self, coordinator):
        handle = coordinator.apply(1)

        assert handle.speculative_value == {"id": 1, "is_liked": True, "likes": 11}
        handle.settle({"id": 1, "is_liked": True, "likes": 11})

        assert handle.done
        with pytest.raises(RuntimeError):
            handle.settle({"id": 1, "is_liked": True, "likes": 11})
        with pytest.raises(RuntimeError):
            handle.revert()

    def test_manual_revert_restores_latest_authoritative(self, coordinator):
        handle = coordinator.apply(1)
        coordinator.seed(1, {"id": 1, "is_liked": False, "likes": 20})

        assert coordinator.visible(1)["is_liked"] is True

        restored = handle.revert()

        assert restored == {"id": 1, "is_liked": False, "likes": 20}
        assert coordinator.visible(1) == restored
        assert coordinator.last_error(1) is None

    def test_unknown_entity(self, coordinator):
        with pytest.raises(KeyError):
            coordinator.apply(42)

    def test_forget_pending_entity_rejected(self, coordinator):
        coordinator.apply(1)

        with pytest.raises(ActionPending):
            coordinator.forget(1)

    def test_project_replaces_known_items(self, coordinator):
        coordinator.apply(1)
        items = [dict(POST), {"id": 2, "is_liked": False, "likes": 0}]

        projected = coordinator.project(items, key=lambda item: item["id"])

        assert projected[0]["likes"] == 11
        assert projected[1] is items[1]

    @pytest.mark.asyncio
    async def test_outcome_metrics(self):
        registry = CollectorRegistry()
        coordinator = OptimisticCoordinator(toggle_like, metrics=MetricsCollector("client", registry))
        coordinator.seed(1, dict(POST))

        async def ok():
            return {"id": 1, "is_liked": True, "likes": 11}

        async def fail():
            raise MutationFailed("no")

        await coordinator.run(1, None, ok)
        with pytest.raises(MutationFailed):
            await coordinator.run(1, None, fail)

        assert registry.get_sample_value("optimistic_outcomes_total", {"outcome": "settled"}) == 1.0
        assert registry.get_sample_value("optimistic_outcomes_total", {"outcome": "reverted"}) == 1.0
