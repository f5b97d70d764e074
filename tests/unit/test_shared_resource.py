from __future__ import annotations

import asyncio

import pytest

from teachable.extractors.shared import (
    SharedResource,
    SharedResourceRegistry,
    default_registry,
    reset_default_registry,
)


class CountingLoader:
    def __init__(self, *, fail_first: bool = False) -> None:
        self.calls = 0
        self.fail_first = fail_first
        self.torn_down: list[object] = []

    async def load(self) -> dict[str, int]:
        self.calls += 1
        await asyncio.sleep(0)
        if self.fail_first and self.calls == 1:
            raise RuntimeError("transient")
        return {"generation": self.calls}

    def teardown(self, value: object) -> None:
        self.torn_down.append(value)


def test_concurrent_acquirers_share_one_load() -> None:
    loader = CountingLoader()
    resource = SharedResource("model", loader.load, teardown=loader.teardown)

    async def scenario() -> None:
        first, second = await asyncio.gather(resource.acquire(), resource.acquire())
        assert first is second
        assert resource.refcount == 2
        await resource.release()
        assert loader.torn_down == []
        await resource.release()

    asyncio.run(scenario())

    assert loader.calls == 1
    assert loader.torn_down == [{"generation": 1}]
    assert resource.is_loaded is False


def test_failed_load_is_retried() -> None:
    loader = CountingLoader(fail_first=True)
    resource = SharedResource("flaky", loader.load)

    async def scenario() -> dict[str, int]:
        with pytest.raises(RuntimeError):
            await resource.acquire()
        assert resource.refcount == 0
        return await resource.acquire()

    assert asyncio.run(scenario()) == {"generation": 2}


def test_extra_release_is_ignored() -> None:
    resource = SharedResource("value", lambda: 42)

    async def scenario() -> None:
        assert await resource.acquire() == 42
        await resource.release()
        await resource.release()

    asyncio.run(scenario())
    assert resource.refcount == 0


def test_registry_rejects_duplicates_and_shuts_down() -> None:
    loader = CountingLoader()
    registry = SharedResourceRegistry()
    resource = registry.register("embedder", loader.load, teardown=loader.teardown)

    with pytest.raises(ValueError):
        registry.register("embedder", loader.load)
    with pytest.raises(KeyError):
        registry.get("missing")

    async def scenario() -> None:
        await registry.get("embedder").acquire()
        await resource.acquire()
        await registry.shutdown()

    asyncio.run(scenario())
    assert loader.torn_down == [{"generation": 1}]
    assert registry.names() == []


def test_default_registry_is_process_wide() -> None:
    registry = default_registry()

    assert default_registry() is registry
    asyncio.run(reset_default_registry())
    assert default_registry() is not registry
