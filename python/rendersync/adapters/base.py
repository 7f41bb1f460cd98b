"""Subsystem adapter interface and two ready-made adapters.

An adapter receives the flat parameter mapping of one subsystem whenever a
synchronized state is published, and may optionally receive security
signals routed to its subsystem.
"""

from __future__ import annotations

import copy
from typing import Any, Callable, Dict, List, Optional, Tuple


class SubsystemAdapter:
    """Base adapter. Subclasses implement :meth:`apply`; :meth:`on_signal` is optional."""

    def apply(self, params: Dict[str, Any]) -> None:
        raise NotImplementedError

    def on_signal(self, event: Any) -> None:
        return None


class RecordingAdapter(SubsystemAdapter):
    """Records every applied parameter mapping and every received signal."""

    def __init__(self) -> None:
        self.applied: List[Dict[str, Any]] = []
        self.signals: List[Any] = []

    @property
    def last(self) -> Optional[Dict[str, Any]]:
        return self.applied[-1] if self.applied else None

    def apply(self, params: Dict[str, Any]) -> None:
        self.applied.append(copy.deepcopy(params))

    def on_signal(self, event: Any) -> None:
        self.signals.append(event)


class CallbackAdapter(SubsystemAdapter):
    """Forwards applied parameters (and optionally signals) to plain callables."""

    def __init__(
        self,
        apply: Callable[[Dict[str, Any]], None],
        on_signal: Optional[Callable[[Any], None]] = None,
    ):
        if not callable(apply):
            raise TypeError("apply must be callable")
        self._apply = apply
        self._on_signal = on_signal

    def apply(self, params: Dict[str, Any]) -> None:
        self._apply(params)

    def on_signal(self, event: Any) -> None:
        if self._on_signal is not None:
            self._on_signal(event)


def split_state(snapshot: Dict[str, Dict[str, Any]], names: Tuple[str, ...]) -> Dict[str, Dict[str, Any]]:
    """Return independent per-subsystem copies of a serialized ParameterState."""
    return {name: copy.deepcopy(snapshot[name]) for name in names if name in snapshot}
