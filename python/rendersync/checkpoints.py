"""
Checkpoints: named, immutable ParameterState snapshots with bounded history

Persistence runs on a single background worker so that saving never delays
a synchronization cycle; writes are applied in submission order.
"""

from __future__ import annotations

import copy
import json
import logging
import os
import threading
import time
import uuid
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Deque, Dict, List, Optional, Union

from .params import ParameterState

logger = logging.getLogger(__name__)

DEFAULT_CHECKPOINT_KEY = "renderSyncCheckpoints"
DEFAULT_CHECKPOINT_LIMIT = 10


@dataclass(frozen=True, init=False)
class Checkpoint:
    """A named snapshot of a serialized ParameterState.

    The snapshot is held privately; ``snapshot`` and ``to_dict()`` hand out
    deep copies so a checkpoint never changes after creation.
    """

    id: str
    name: str
    timestamp: float
    _snapshot: Dict[str, Dict[str, Any]] = field(repr=False)

    def __init__(self, id: str, name: str, timestamp: float, snapshot: Dict[str, Dict[str, Any]]):
        object.__setattr__(self, "id", id)
        object.__setattr__(self, "name", name)
        object.__setattr__(self, "timestamp", timestamp)
        object.__setattr__(self, "_snapshot", copy.deepcopy(dict(snapshot)))

    @property
    def snapshot(self) -> Dict[str, Dict[str, Any]]:
        return copy.deepcopy(self._snapshot)

    def state(self) -> ParameterState:
        return ParameterState.from_mapping(self._snapshot)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "timestamp": self.timestamp,
            "snapshot": copy.deepcopy(self._snapshot),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Checkpoint":
        snapshot = data["snapshot"]
        # Reject snapshots that do not load as a ParameterState
        ParameterState.from_mapping(snapshot)
        return cls(
            id=str(data["id"]),
            name=str(data["name"]),
            timestamp=float(data["timestamp"]),
            snapshot=snapshot,
        )


class MemoryCheckpointStore:
    """Keeps persisted records in process memory."""

    def __init__(self) -> None:
        self._records: List[Dict[str, Any]] = []

    def load(self) -> List[Dict[str, Any]]:
        return copy.deepcopy(self._records)

    def save(self, records: List[Dict[str, Any]]) -> None:
        self._records = copy.deepcopy(records)


class JsonCheckpointStore:
    """Persists records under ``key`` in a JSON document on disk.

    Other top-level keys in the document are preserved. Writes go to a
    temporary file that then replaces the document.
    """

    def __init__(self, path: Union[str, Path], key: str = DEFAULT_CHECKPOINT_KEY):
        self.path = Path(path)
        self.key = key

    def _read_document(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        with open(self.path, "r", encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError(f"{self.path} does not hold a JSON object")
        return data

    def load(self) -> List[Dict[str, Any]]:
        records = self._read_document().get(self.key, [])
        if not isinstance(records, list):
            raise ValueError(f"{self.path}: '{self.key}' is not a list")
        return records

    def save(self, records: List[Dict[str, Any]]) -> None:
        try:
            document = self._read_document()
        except ValueError:
            document = {}
        document[self.key] = records
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_name(self.path.name + ".tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(document, f, indent=2)
        os.replace(tmp, self.path)


class CheckpointManager:
    """Bounded checkpoint history with asynchronous persistence.

    Args:
        store: Object with ``load()`` and ``save(records)``; defaults to an
            in-memory store.
        limit: Maximum number of checkpoints kept; the oldest is evicted.
        clock: Returns the current time in seconds since the epoch.
    """

    def __init__(
        self,
        store: Optional[Any] = None,
        limit: int = DEFAULT_CHECKPOINT_LIMIT,
        clock: Callable[[], float] = time.time,
    ):
        if limit < 1:
            raise ValueError("limit must be >= 1")
        self.store = store if store is not None else MemoryCheckpointStore()
        self.limit = int(limit)
        self._clock = clock
        self._history: Deque[Checkpoint] = deque(maxlen=self.limit)
        self._lock = threading.Lock()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="rendersync-checkpoints")
        self._pending: List[Future] = []
        self._stats = {"saved": 0, "restored": 0, "persisted": 0, "persist_failures": 0}
        self._load()

    def _load(self) -> None:
        try:
            records = self.store.load()
        except (OSError, ValueError) as exc:
            logger.warning("Could not load checkpoint history: %s", exc)
            return
        for record in records[-self.limit:]:
            try:
                self._history.append(Checkpoint.from_dict(record))
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("Skipping unreadable checkpoint record: %s", exc)

    def __len__(self) -> int:
        return len(self._history)

    def list(self) -> List[Checkpoint]:
        """Checkpoints, oldest first."""
        return list(self._history)

    def latest(self) -> Optional[Checkpoint]:
        return self._history[-1] if self._history else None

    def get(self, checkpoint_id: str) -> Optional[Checkpoint]:
        for checkpoint in self._history:
            if checkpoint.id == checkpoint_id:
                return checkpoint
        return None

    def save(self, state: ParameterState, name: Optional[str] = None) -> Checkpoint:
        if not isinstance(state, ParameterState):
            raise TypeError("save() expects a ParameterState")
        timestamp = float(self._clock())
        if not name:
            name = f"Checkpoint {datetime.fromtimestamp(timestamp).strftime('%H:%M:%S')}"
        checkpoint = Checkpoint(
            id=uuid.uuid4().hex,
            name=str(name),
            timestamp=timestamp,
            snapshot=state.to_dict(),
        )
        self._history.append(checkpoint)
        self._stats["saved"] += 1
        logger.info("Saved checkpoint %r (%s)", checkpoint.name, checkpoint.id)
        self._persist()
        return checkpoint

    def restore(self, checkpoint_id: Optional[str] = None) -> Optional[ParameterState]:
        """Return the snapshot of ``checkpoint_id`` (latest when omitted), or None."""
        checkpoint = self.latest() if checkpoint_id is None else self.get(checkpoint_id)
        if checkpoint is None:
            return None
        self._stats["restored"] += 1
        logger.info("Restored checkpoint %r (%s)", checkpoint.name, checkpoint.id)
        return checkpoint.state()

    def clear(self) -> None:
        self._history.clear()
        self._persist()

    def _persist(self) -> None:
        records = [c.to_dict() for c in self._history]
        with self._lock:
            self._pending = [f for f in self._pending if not f.done()]
            self._pending.append(self._executor.submit(self._write, records))

    def _write(self, records: List[Dict[str, Any]]) -> None:
        try:
            self.store.save(records)
        except (OSError, TypeError, ValueError) as exc:
            self._stats["persist_failures"] += 1
            logger.warning("Checkpoint persistence failed: %s", exc)
        else:
            self._stats["persisted"] += 1

    def flush(self, timeout: Optional[float] = None) -> None:
        """Block until every queued persistence write has finished."""
        with self._lock:
            pending = list(self._pending)
        for future in pending:
            future.result(timeout=timeout)

    def get_stats(self) -> Dict[str, int]:
        return {**self._stats, "count": len(self._history), "limit": self.limit}

    def cleanup(self) -> None:
        self._executor.shutdown(wait=True)


__all__ = [
    "Checkpoint",
    "CheckpointManager",
    "MemoryCheckpointStore",
    "JsonCheckpointStore",
    "DEFAULT_CHECKPOINT_KEY",
    "DEFAULT_CHECKPOINT_LIMIT",
]
