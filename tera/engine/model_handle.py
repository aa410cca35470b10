"""Process-wide model handle with a single-initialization guarantee."""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable

from .adapters.base import BaseAdapter

logger = logging.getLogger(__name__)


class SharedModelHandle:
    """Lazily loads one adapter and shares it for the life of the process.

    `get()` calls the injected loader at most once, even when many threads
    race on first access; everyone receives the same adapter. A loader that
    raises leaves the handle empty, so the next `get()` tries again.

    Runs must not use the adapter's internal state directly: each run opens
    its own decode session (`BaseAdapter.open_session()`).
    """

    def __init__(self, loader: Callable[[], BaseAdapter]) -> None:
        self._loader = loader
        self._lock = threading.Lock()
        self._adapter: BaseAdapter | None = None

    @classmethod
    def of(cls, adapter: BaseAdapter) -> "SharedModelHandle":
        """Wrap an already loaded adapter."""
        handle = cls(lambda: adapter)
        handle._adapter = adapter
        return handle

    @property
    def loaded(self) -> bool:
        return self._adapter is not None

    def get(self) -> BaseAdapter:
        adapter = self._adapter
        if adapter is not None:
            return adapter

        with self._lock:
            if self._adapter is None:
                started = time.monotonic()
                self._adapter = self._loader()
                logger.info("model handle ready in %.2fs", time.monotonic() - started)
            return self._adapter

    def unload(self) -> None:
        with self._lock:
            adapter, self._adapter = self._adapter, None
        if adapter is not None:
            adapter.unload()
