from __future__ import annotations

import asyncio

import numpy as np

from teachable.buffer import ExampleBuffer
from teachable.capture import CaptureController, LatestSampleSource
from teachable.extractors import AsyncCallAdapter
from teachable.registry import ClassRegistry
from teachable.tensors import TensorTracker
from teachable.types import ExtractorStatus


def _as_vector(raw) -> np.ndarray:
    return np.asarray(raw, dtype=np.float32)


class Rig:
    """Capture controller wired to a registry and buffer like a session does."""

    def __init__(self, adapter: AsyncCallAdapter, *, classes: int = 3, source=None) -> None:
        self.tracker = TensorTracker()
        self.registry = ClassRegistry()
        for _ in range(classes):
            self.registry.add_class()
        self.buffer = ExampleBuffer(self.tracker)
        self.controller = CaptureController(
            registry=self.registry,
            buffer=self.buffer,
            adapter=adapter,
            tracker=self.tracker,
            source=source,
            interval_seconds=0.05,
        )
        self.registry.on_class_removed(self._removed)

    def _removed(self, index: int) -> None:
        self.controller.class_removed(index)
        self.buffer.remove_class(index)


class GatedExtractor:
    def __init__(self) -> None:
        self.gate = asyncio.Event()

    async def __call__(self, raw) -> np.ndarray:
        await self.gate.wait()
        return _as_vector(raw)


def test_ready_extractor_commits_immediately() -> None:
    rig = Rig(AsyncCallAdapter(_as_vector))

    result = asyncio.run(rig.controller.collect_example(1, [0.5, 0.5]))

    assert result.status == "committed"
    assert result.accepted
    assert rig.registry.counts() == [0, 1, 0]
    assert rig.buffer.labels == (1,)
    assert rig.tracker.live_count == 1


def test_loading_extractor_queues_then_flushes_in_order() -> None:
    adapter = AsyncCallAdapter()
    adapter.set_status(ExtractorStatus.LOADING)
    rig = Rig(adapter)

    async def scenario() -> None:
        for index, raw in ((0, [1.0]), (1, [2.0]), (0, [3.0])):
            result = await rig.controller.collect_example(index, raw)
            assert result.status == "queued"
        assert rig.controller.pending_count == 3
        assert rig.registry.counts() == [0, 0, 0]

        adapter.attach(_as_vector)
        late = await rig.controller.collect_example(2, [4.0])
        assert late.status == "queued"

        assert await rig.controller.flush_pending() == 4

    asyncio.run(scenario())

    assert rig.buffer.labels == (0, 1, 0, 2)
    assert rig.registry.counts() == [2, 1, 1]
    assert rig.controller.pending_count == 0


def test_pending_count_covers_item_being_drained() -> None:
    adapter = AsyncCallAdapter()
    adapter.set_status(ExtractorStatus.LOADING)
    rig = Rig(adapter)
    extractor = GatedExtractor()

    async def scenario() -> None:
        await rig.controller.collect_example(0, [1.0])
        await rig.controller.collect_example(0, [2.0])
        adapter.attach(extractor)

        drain = asyncio.create_task(rig.controller.flush_pending())
        await asyncio.sleep(0)
        assert rig.controller.pending_count == 2
        assert rig.buffer.pending_count == 1

        extractor.gate.set()
        assert await drain == 2
        assert rig.controller.pending_count == 0

    asyncio.run(scenario())


def test_concurrent_flush_waits_for_running_drain() -> None:
    adapter = AsyncCallAdapter()
    adapter.set_status(ExtractorStatus.LOADING)
    rig = Rig(adapter)

    async def scenario() -> list[int]:
        for value in range(3):
            await rig.controller.collect_example(value % 2, [float(value)])
        adapter.attach(_as_vector)
        return list(
            await asyncio.gather(rig.controller.flush_pending(), rig.controller.flush_pending())
        )

    results = asyncio.run(scenario())

    assert sorted(results) == [0, 3]
    assert rig.buffer.labels == (0, 1, 0)


def test_overlapping_capture_is_reported_busy() -> None:
    extractor = GatedExtractor()
    rig = Rig(AsyncCallAdapter(extractor))

    async def scenario() -> None:
        first = asyncio.create_task(rig.controller.collect_example(0, [1.0]))
        await asyncio.sleep(0)

        second = await rig.controller.collect_example(0, [2.0])
        assert second.status == "busy"

        extractor.gate.set()
        assert (await first).status == "committed"

    asyncio.run(scenario())

    assert rig.registry.counts() == [1, 0, 0]
    assert len(rig.buffer) == 1


def test_capture_for_removed_class_is_discarded() -> None:
    extractor = GatedExtractor()
    rig = Rig(AsyncCallAdapter(extractor))

    async def scenario() -> str:
        pending = asyncio.create_task(rig.controller.collect_example(1, [1.0]))
        await asyncio.sleep(0)
        assert rig.registry.remove_class(1)
        extractor.gate.set()
        return (await pending).status

    assert asyncio.run(scenario()) == "discarded"
    assert rig.registry.counts() == [0, 0]
    assert rig.tracker.live_count == 0


def test_in_flight_capture_follows_reindexed_class() -> None:
    extractor = GatedExtractor()
    rig = Rig(AsyncCallAdapter(extractor))

    async def scenario():
        pending = asyncio.create_task(rig.controller.collect_example(2, [1.0]))
        await asyncio.sleep(0)
        rig.registry.remove_class(0)
        extractor.gate.set()
        return await pending

    result = asyncio.run(scenario())

    assert result.status == "committed"
    assert result.class_index == 1
    assert rig.registry.counts() == [0, 1]
    assert rig.buffer.labels == (1,)


def test_cleared_class_discards_in_flight_capture() -> None:
    extractor = GatedExtractor()
    rig = Rig(AsyncCallAdapter(extractor))

    async def scenario() -> str:
        pending = asyncio.create_task(rig.controller.collect_example(0, [1.0]))
        await asyncio.sleep(0)
        rig.controller.class_cleared(0)
        extractor.gate.set()
        return (await pending).status

    assert asyncio.run(scenario()) == "discarded"
    assert rig.registry.counts() == [0, 0, 0]


def test_extraction_failure_drops_example() -> None:
    def picky(raw):
        if raw == "bad":
            raise ValueError("unreadable frame")
        return [1.0, 2.0]

    rig = Rig(AsyncCallAdapter(picky))

    async def scenario() -> None:
        failed = await rig.controller.collect_example(0, "bad")
        assert failed.status == "extraction_error"
        assert "unreadable frame" in (failed.reason or "")
        assert (await rig.controller.collect_example(0, "good")).status == "committed"

    asyncio.run(scenario())

    assert rig.registry.counts() == [1, 0, 0]


def test_capture_source_failure_is_reported() -> None:
    source = LatestSampleSource([1.0, 1.0])
    rig = Rig(AsyncCallAdapter(_as_vector), source=source)

    async def scenario() -> None:
        source.fail("camera unplugged")
        result = await rig.controller.collect_example(0)
        assert result.status == "no_capture"
        assert result.reason == "camera unplugged"
        assert rig.controller.capture_error == "camera unplugged"
        assert "capture source unavailable: camera unplugged" in rig.controller.collect_blockers()

        source.push([2.0, 2.0])
        assert (await rig.controller.collect_example(0)).status == "committed"
        assert rig.controller.capture_error is None

    asyncio.run(scenario())


def test_source_without_sample_blocks_collection() -> None:
    rig = Rig(AsyncCallAdapter(_as_vector), source=LatestSampleSource())

    assert rig.controller.collect_blockers() == ["capture source not ready"]
    result = asyncio.run(rig.controller.collect_example(0))
    assert result.status == "no_capture"


def test_invalid_class_and_closed_controller() -> None:
    rig = Rig(AsyncCallAdapter(_as_vector))

    async def scenario() -> None:
        assert (await rig.controller.collect_example(7, [1.0])).status == "invalid_class"
        await rig.controller.aclose()
        assert (await rig.controller.collect_example(0, [1.0])).status == "closed"

    asyncio.run(scenario())


def test_interval_collection_runs_until_stopped() -> None:
    rig = Rig(AsyncCallAdapter(_as_vector), source=LatestSampleSource([0.0, 1.0]))

    async def scenario() -> tuple[int, int]:
        assert await rig.controller.start_collecting(0)
        assert rig.controller.collecting_class_index == 0
        await asyncio.sleep(0.3)
        assert rig.controller.stop_collecting() is True
        collected = rig.registry.counts()[0]
        await asyncio.sleep(0.15)
        return collected, rig.registry.counts()[0]

    collected, later = asyncio.run(scenario())

    assert 3 <= collected <= 9
    assert later == collected
    assert rig.controller.collecting_class_index is None


def test_stop_collecting_when_idle_is_noop() -> None:
    rig = Rig(AsyncCallAdapter(_as_vector))

    assert rig.controller.stop_collecting() is False
    assert rig.controller.collecting_class_index is None
    assert rig.registry.counts() == [0, 0, 0]


def test_backlog_drains_after_extractor_attached_outside_loop() -> None:
    adapter = AsyncCallAdapter()
    adapter.set_status(ExtractorStatus.LOADING)
    rig = Rig(adapter)

    asyncio.run(rig.controller.collect_example(0, [1.0]))
    adapter.attach(_as_vector)
    assert rig.controller.pending_count == 1

    async def scenario() -> str:
        result = await rig.controller.collect_example(1, [2.0])
        for _ in range(50):
            if not rig.controller.pending_count:
                break
            await asyncio.sleep(0.001)
        return result.status

    assert asyncio.run(scenario()) == "queued"
    assert rig.controller.pending_count == 0
    assert rig.buffer.labels == (0, 1)
    assert rig.registry.counts() == [1, 1, 0]


def test_failed_extraction_during_drain_is_skipped() -> None:
    def picky(raw):
        if raw == "bad":
            raise ValueError("corrupt frame")
        return [1.0, 2.0]

    adapter = AsyncCallAdapter()
    adapter.set_status(ExtractorStatus.LOADING)
    rig = Rig(adapter)

    async def scenario() -> int:
        for index, raw in ((0, "good"), (1, "bad"), (2, "good")):
            assert (await rig.controller.collect_example(index, raw)).status == "queued"
        adapter.attach(picky)
        return await rig.controller.flush_pending()

    assert asyncio.run(scenario()) == 2
    assert rig.registry.counts() == [1, 0, 1]
    assert rig.buffer.labels == (0, 2)
    assert rig.controller.pending_count == 0
    assert rig.tracker.live_count == 2
