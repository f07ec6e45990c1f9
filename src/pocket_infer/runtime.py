# SPDX-License-Identifier: MIT
# Copyright (c) 2025-2026 Soroush Yousefpour

"""Bookkeeping for loaded models: idle release and LRU eviction."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

logger = logging.getLogger(__name__)

ReleaseCallback = Callable[[str], None]


@dataclass
class LoadedModelInfo:
    filename: str
    size_bytes: int
    last_used: float


@dataclass
class _LoadedModel:
    filename: str
    size_bytes: int
    last_used: float
    release_callback: Optional[ReleaseCallback]


class ModelRuntime:
    """Tracks which models are loaded and releases the ones not in use.

    Parameters
    ----------
    idle_seconds:
        Models unused for this long are released on the next
        ``ensure_loaded`` call.  ``0`` or less disables idle release.
    clock:
        Monotonic time source, in seconds.
    """

    def __init__(
        self,
        idle_seconds: float = 0.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.idle_seconds = idle_seconds
        self._clock = clock
        self._loaded: dict[str, _LoadedModel] = {}
        self._lock = threading.Lock()

    def ensure_loaded(
        self,
        filename: str,
        size_bytes: int,
        release_callback: Optional[ReleaseCallback] = None,
    ) -> bool:
        """Record *filename* as loaded, or refresh its last-used time."""
        self.cleanup_idle()
        with self._lock:
            now = self._clock()
            existing = self._loaded.get(filename)
            if existing is not None:
                existing.last_used = now
                return True
            self._loaded[filename] = _LoadedModel(filename, size_bytes, now, release_callback)
        logger.debug("Loaded model: %s (%dMB)", filename, size_bytes // (1024 * 1024))
        return True

    def register_loaded(
        self,
        filename: str,
        size_bytes: int,
        release_callback: Optional[ReleaseCallback] = None,
    ) -> None:
        """Record a model that was loaded elsewhere, replacing any old entry."""
        with self._lock:
            self._loaded[filename] = _LoadedModel(
                filename, size_bytes, self._clock(), release_callback
            )

    def mark_used(self, filename: str) -> None:
        with self._lock:
            model = self._loaded.get(filename)
            if model is not None:
                model.last_used = self._clock()

    def remove_loaded(self, filename: str) -> None:
        with self._lock:
            self._loaded.pop(filename, None)

    def is_loaded(self, filename: str) -> bool:
        with self._lock:
            return filename in self._loaded

    def loaded_model_info(self, filename: str) -> Optional[LoadedModelInfo]:
        with self._lock:
            model = self._loaded.get(filename)
            if model is None:
                return None
            return LoadedModelInfo(model.filename, model.size_bytes, model.last_used)

    # ------------------------------------------------------------------

    def cleanup_idle(self) -> list[str]:
        """Release every model idle for ``idle_seconds`` or longer.

        Returns the released filenames.
        """
        if self.idle_seconds <= 0:
            return []

        with self._lock:
            now = self._clock()
            idle = [
                model
                for model in self._loaded.values()
                if now - model.last_used >= self.idle_seconds
            ]
            for model in idle:
                del self._loaded[model.filename]

        # Callbacks run outside the lock; they may call back into the runtime.
        for model in idle:
            logger.debug("Unloaded idle model: %s", model.filename)
            self._notify(model, "Error releasing model")
        return [model.filename for model in idle]

    def evict_least_recently_used(self) -> Optional[str]:
        """Release the least recently used model, returning its filename."""
        with self._lock:
            if not self._loaded:
                return None
            lru = min(self._loaded.values(), key=lambda m: m.last_used)
            del self._loaded[lru.filename]

        logger.warning("Evicted model due to memory pressure: %s", lru.filename)
        self._notify(lru, "Error releasing evicted model")
        return lru.filename

    @staticmethod
    def _notify(model: _LoadedModel, message: str) -> None:
        if model.release_callback is None:
            return
        try:
            model.release_callback(model.filename)
        except Exception:
            logger.exception("%s: %s", message, model.filename)
