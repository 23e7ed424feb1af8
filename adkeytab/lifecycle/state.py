"""Persistent lifecycle state — the initialization marker and the lifecycle lock.

The marker is a plain file whose existence means "joined successfully".
While it exists the join sequence must never run again, since every join
can leave another computer object in AD.  It is only ever removed by an
operator forcing re-initialization.
"""

from __future__ import annotations

import fcntl
import logging
import threading
from abc import ABC, abstractmethod
from collections.abc import Iterator
from contextlib import contextmanager
from enum import Enum
from pathlib import Path

from adkeytab.config.models import INITIALIZED_MARKER, LIFECYCLE_LOCK

logger = logging.getLogger(__name__)


class LifecycleState(str, Enum):
    """Where the machine identity stands."""

    UNINITIALIZED = "uninitialized"
    JOINING = "joining"
    INITIALIZED = "initialized"
    DEGRADED = "degraded"  # initialized, but the membership test failed


class StateStore(ABC):
    """Storage for the initialization marker."""

    @abstractmethod
    def is_initialized(self) -> bool:
        ...

    @abstractmethod
    def mark_initialized(self) -> None:
        ...

    @abstractmethod
    @contextmanager
    def lock(self) -> Iterator[None]:
        """Exclusive section for the join sequence and keytab refreshes."""
        ...


class FileStateStore(StateStore):
    """Marker file plus an ``flock`` advisory lock, shareable across processes.

    Usage:
        store = FileStateStore()
        with store.lock():
            if not store.is_initialized():
                ...
                store.mark_initialized()
    """

    def __init__(
        self,
        marker: Path = INITIALIZED_MARKER,
        lock_path: Path = LIFECYCLE_LOCK,
    ) -> None:
        self.marker = marker
        self.lock_path = lock_path

    def is_initialized(self) -> bool:
        return self.marker.exists()

    def mark_initialized(self) -> None:
        self.marker.parent.mkdir(parents=True, exist_ok=True)
        self.marker.touch()

    @contextmanager
    def lock(self) -> Iterator[None]:
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.lock_path, "a") as handle:
            logger.debug("Waiting for lifecycle lock %s", self.lock_path)
            fcntl.flock(handle, fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(handle, fcntl.LOCK_UN)


class MemoryStateStore(StateStore):
    """In-process store for tests and dry runs."""

    def __init__(self, initialized: bool = False) -> None:
        self.initialized = initialized
        self._lock = threading.Lock()

    def is_initialized(self) -> bool:
        return self.initialized

    def mark_initialized(self) -> None:
        self.initialized = True

    @contextmanager
    def lock(self) -> Iterator[None]:
        with self._lock:
            yield
