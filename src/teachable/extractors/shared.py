"""Process-wide, lazily loaded, reference-counted resources.

Heavy extractors (embedding models, landmark detectors) are expensive to load
and safe to share between sessions. A :class:`SharedResource` loads its value
on first :meth:`acquire`, hands the same instance to every holder, and runs its
teardown hook once the last holder releases it.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import Any, Generic, TypeVar

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


class SharedResource(Generic[T]):
    """Lazily initialised value shared by reference count."""

    def __init__(
        self,
        name: str,
        loader: Callable[[], Awaitable[T] | T],
        *,
        teardown: Callable[[T], Awaitable[None] | None] | None = None,
    ) -> None:
        self.name = name
        self._loader = loader
        self._teardown = teardown
        self._value: T | None = None
        self._loaded = False
        self._loading: asyncio.Future[T] | None = None
        self._refcount = 0

    @property
    def refcount(self) -> int:
        return self._refcount

    @property
    def is_loaded(self) -> bool:
        return self._loaded

    async def acquire(self) -> T:
        """Return the shared value, loading it on first use.

        Concurrent acquirers wait on the same load. A failed load is not
        cached, so the next acquire retries.
        """

        if self._loaded:
            self._refcount += 1
            return self._value  # type: ignore[return-value]

        if self._loading is None:
            self._loading = asyncio.ensure_future(self._load())
        loading = self._loading
        try:
            value = await asyncio.shield(loading)
        except Exception:
            if self._loading is loading:
                self._loading = None
            raise
        self._refcount += 1
        return value

    async def release(self) -> None:
        """Drop one reference; the last release tears the value down."""

        if self._refcount <= 0:
            LOGGER.warning("Shared resource '%s' released more often than acquired", self.name)
            return
        self._refcount -= 1
        if self._refcount > 0 or not self._loaded:
            return
        value = self._value
        self._value = None
        self._loaded = False
        self._loading = None
        LOGGER.info("Releasing shared resource '%s'", self.name)
        if self._teardown is not None and value is not None:
            outcome = self._teardown(value)
            if inspect.isawaitable(outcome):
                await outcome

    async def _load(self) -> T:
        LOGGER.info("Loading shared resource '%s'", self.name)
        outcome = self._loader()
        value = await outcome if inspect.isawaitable(outcome) else outcome
        self._value = value
        self._loaded = True
        return value


class SharedResourceRegistry:
    """Owner of named shared resources with explicit init and teardown."""

    def __init__(self) -> None:
        self._resources: dict[str, SharedResource[Any]] = {}

    def register(
        self,
        name: str,
        loader: Callable[[], Awaitable[Any] | Any],
        *,
        teardown: Callable[[Any], Awaitable[None] | None] | None = None,
    ) -> SharedResource[Any]:
        if name in self._resources:
            raise ValueError(f"Shared resource '{name}' is already registered.")
        resource: SharedResource[Any] = SharedResource(name, loader, teardown=teardown)
        self._resources[name] = resource
        return resource

    def get(self, name: str) -> SharedResource[Any]:
        try:
            return self._resources[name]
        except KeyError as exc:
            raise KeyError(f"Shared resource '{name}' is not registered.") from exc

    def names(self) -> list[str]:
        return list(self._resources)

    async def shutdown(self) -> None:
        """Force-release every loaded resource regardless of holders."""

        for resource in self._resources.values():
            while resource.refcount > 0:
                await resource.release()
        self._resources.clear()


_DEFAULT_REGISTRY: SharedResourceRegistry | None = None


def default_registry() -> SharedResourceRegistry:
    """Return the process-wide registry, creating it on first use."""

    global _DEFAULT_REGISTRY
    if _DEFAULT_REGISTRY is None:
        _DEFAULT_REGISTRY = SharedResourceRegistry()
    return _DEFAULT_REGISTRY


async def reset_default_registry() -> None:
    """Tear down and forget the process-wide registry."""

    global _DEFAULT_REGISTRY
    if _DEFAULT_REGISTRY is not None:
        await _DEFAULT_REGISTRY.shutdown()
    _DEFAULT_REGISTRY = None


__all__ = [
    "SharedResource",
    "SharedResourceRegistry",
    "default_registry",
    "reset_default_registry",
]
