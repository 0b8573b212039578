"""
Tests for cancellation scopes and gather states.

Gather states run real asyncio tasks; each test drives its scenario with
asyncio.run.
"""

import asyncio

from sift.state import (
    AvailableSourceInfo,
    CancelScope,
    GatherState,
    GatherStatus,
    QuitAbortReason,
    RefreshAbortReason,
    is_refresh_target,
)
from sift.types import SiftItem


class _Source:
    name = "fake"


def _info(index):
    return AvailableSourceInfo(source_index=index, source=_Source(), source_options={}, source_params={})


async def _batches(*batches, hang=False):
    for batch in batches:
        await asyncio.sleep(0)
        yield [SiftItem(word=word) for word in batch]
    if hang:
        await asyncio.sleep(3600)


async def _failing():
    yield [SiftItem(word="a")]
    raise RuntimeError("boom")


def _words(state):
    return [item.word for item in state.items]


class TestRefreshTarget:
    def test_empty_set_targets_all(self):
        assert is_refresh_target(3, ())

    def test_membership(self):
        assert is_refresh_target(1, (1, 2))
        assert not is_refresh_target(0, (1, 2))


class TestCancelScope:
    """Abort propagation through the scope tree."""

    def test_abort_propagates_to_children(self):
        root = CancelScope()
        child = CancelScope(root)
        grandchild = CancelScope(child)

        root.abort(QuitAbortReason())

        assert child.aborted
        assert grandchild.aborted
        assert grandchild.reason.type == "quit"

    def test_accepts_filters_parent_aborts(self):
        root = CancelScope()
        first = CancelScope(root, accepts=lambda reason: reason.applies_to(1))
        second = CancelScope(root, accepts=lambda reason: reason.applies_to(2))

        root.abort(RefreshAbortReason([1]))

        assert first.aborted
        assert not second.aborted

    def test_direct_abort_ignores_accepts(self):
        scope = CancelScope(accepts=lambda reason: False)
        scope.abort(RefreshAbortReason([5]))
        assert scope.aborted

    def test_callbacks_run_once(self):
        calls = []
        scope = CancelScope()
        scope.add_callback(calls.append)

        scope.abort(QuitAbortReason())
        scope.abort(QuitAbortReason())

        assert len(calls) == 1

    def test_callback_added_after_abort_runs_immediately(self):
        calls = []
        scope = CancelScope()
        scope.abort()
        scope.add_callback(calls.append)
        assert len(calls) == 1

    def test_reparent_moves_child(self):
        old_root, new_root = CancelScope(), CancelScope()
        child = CancelScope(old_root)

        child.reparent(new_root)
        old_root.abort()

        assert not child.aborted
        assert child not in old_root.children
        assert child in new_root.children

    def test_reparent_to_aborted_parent_aborts(self):
        aborted_root = CancelScope()
        aborted_root.abort(QuitAbortReason())
        child = CancelScope(CancelScope())

        child.reparent(aborted_root)

        assert child.aborted

    def test_release_drops_callbacks_and_parent(self):
        root = CancelScope()
        child = CancelScope(root)
        calls = []
        child.add_callback(calls.append)

        child.release()
        root.abort()

        assert child not in root.children
        assert not child.aborted
        assert calls == []

    def test_reparent_is_noop_once_aborted(self):
        old_root, new_root = CancelScope(), CancelScope()
        child = CancelScope(old_root)
        child.abort()

        child.reparent(new_root)

        assert child not in new_root.children


class TestGatherState:
    """Streaming, completion and cancellation of one source invocation."""

    def test_streams_batches_in_order(self):
        async def scenario():
            state = GatherState(_info(0), _batches(["A", "B"], ["C"]))
            seen = [[item.word for item in batch] async for batch in state.stream()]
            await state.wait_done()
            return state, seen

        state, seen = asyncio.run(scenario())

        assert seen == [["A", "B"], ["C"]]
        assert _words(state) == ["A", "B", "C"]
        assert state.status is GatherStatus.DONE
        assert state.is_done

    def test_items_grow_monotonically(self):
        async def scenario():
            state = GatherState(_info(0), _batches(["A"], ["B", "C"], ["D"]))
            lengths = []
            async for _ in state.stream():
                lengths.append(len(state.items))
            await state.wait_done()
            lengths.append(len(state.items))
            await asyncio.sleep(0)
            lengths.append(len(state.items))
            return lengths

        lengths = asyncio.run(scenario())

        assert lengths == sorted(lengths)
        assert lengths[-1] == lengths[-2] == 4

    def test_empty_batches_are_skipped(self):
        async def scenario():
            state = GatherState(_info(0), _batches([], ["A"], []))
            return [batch async for batch in state.stream()]

        batches = asyncio.run(scenario())
        assert len(batches) == 1

    def test_abort_from_parent(self):
        async def scenario():
            root = CancelScope()
            state = GatherState(_info(0), _batches(["A"], hang=True), parent=root)
            async for _ in state.stream():
                root.abort(QuitAbortReason())
            await state.wait_done()
            return state

        state = asyncio.run(scenario())

        assert state.status is GatherStatus.ABORTED
        assert _words(state) == ["A"]

    def test_selective_refresh_abort(self):
        async def scenario():
            root = CancelScope()
            first = GatherState(_info(1), _batches(["A"], hang=True), parent=root)
            second = GatherState(_info(2), _batches(["B"], hang=True), parent=root)
            await asyncio.sleep(0.01)

            root.abort(RefreshAbortReason([1]))
            await first.wait_done()
            status = second.status

            second.cancel()
            await second.wait_done()
            return first.status, status

        first_status, second_status = asyncio.run(scenario())

        assert first_status is GatherStatus.ABORTED
        assert second_status is GatherStatus.STREAMING

    def test_queued_batches_drain_after_abort(self):
        async def scenario():
            state = GatherState(_info(0), _batches(["A"], ["B"], hang=True))
            await asyncio.sleep(0.01)
            state.cancel()
            await state.wait_done()
            return [[item.word for item in batch] async for batch in state.stream()]

        assert asyncio.run(scenario()) == [["A"], ["B"]]

    def test_gather_error_is_logged_and_done(self, log_messages):
        async def scenario():
            state = GatherState(_info(0), _failing())
            await state.read_all()
            await state.wait_done()
            return state

        state = asyncio.run(scenario())

        assert state.status is GatherStatus.DONE
        assert _words(state) == ["a"]
        assert 'source: fake "gather()" failed' in "".join(log_messages)

    def test_small_buffer_applies_backpressure(self):
        async def scenario():
            state = GatherState(
                _info(0), _batches(["A"], ["B"], ["C"], ["D"]), buffer_size=1,
            )
            await asyncio.sleep(0.01)
            buffered = len(state.items)
            seen = [batch async for batch in state.stream()]
            return buffered, len(seen)

        buffered, seen = asyncio.run(scenario())

        # The producer waits for the consumer once the buffer is full
        assert buffered < 4
        assert seen == 4

    def test_finished_state_leaves_the_tree(self):
        async def scenario():
            root = CancelScope()
            state = GatherState(_info(0), _batches(["A"]), parent=root)
            await state.read_all()
            return root, state

        root, state = asyncio.run(scenario())

        assert root.children == []
        assert state.scope.parent is None
        assert state.status is GatherStatus.DONE

    def test_aborted_state_leaves_the_tree(self):
        async def scenario():
            root = CancelScope()
            state = GatherState(_info(0), _batches(["A"], hang=True), parent=root)
            async for _ in state.stream():
                state.cancel()
            await state.wait_done()
            return root, state

        root, state = asyncio.run(scenario())

        assert root.children == []
        assert state.status is GatherStatus.ABORTED
