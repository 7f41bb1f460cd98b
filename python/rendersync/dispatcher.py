# python/rendersync/dispatcher.py
# Synchronization dispatcher: the single writer of the render parameter state
# Exists to sequence update -> validate -> resolve -> publish without interleaving cycles
# RELEVANT FILES: python/rendersync/commands.py, python/rendersync/resolver.py, python/rendersync/security.py, tests/test_dispatcher.py
from __future__ import annotations

import logging
import threading
import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Mapping, Optional

from . import commands as cmd
from . import presets
from .adapters import split_state
from .checkpoints import CheckpointManager, JsonCheckpointStore, MemoryCheckpointStore
from .config import ConfigSource, load_engine_config
from .conflicts import Conflict, evaluate, log_conflicts
from .params import ParameterState, ParameterStore, Subsystem
from .resolver import ConflictResolver, ResolutionOutcome, ResolutionPolicy, ResolutionResult
from .security import SecurityEscalationMachine, SignalEvent

logger = logging.getLogger(__name__)

TRANSITION_HISTORY_LIMIT = 100


class SyncStatus(str, Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    CONFLICT_DETECTED = "conflictDetected"
    RESOLVING = "resolving"
    SYNCHRONIZED = "synchronized"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class Notification:
    id: str
    severity: str
    message: str
    suggestion: str
    timestamp: float
    kind: str = ""

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "severity": self.severity,
            "message": self.message,
            "suggestion": self.suggestion,
            "timestamp": self.timestamp,
            "kind": self.kind,
        }


@dataclass(frozen=True)
class LogEntry:
    timestamp: float
    event: str
    message: str
    severity: str = "info"
    details: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Transition:
    previous: SyncStatus
    current: SyncStatus
    timestamp: float


class RenderSyncDispatcher:
    """Sequences commands through the synchronization state machine.

    All parameter writes happen here. Commands sent while a command is being
    processed (from an adapter, a listener or another thread) are queued and
    processed in submission order once the current one finishes. Updates and
    checkpoint commands that arrive while a conflict awaits a decision are
    deferred until the dispatcher is idle again. Security commands are never
    deferred: the escalation machine keeps its own lifecycle.

    Args:
        adapters: Mapping of subsystem (name or :class:`Subsystem`) to an
            adapter exposing ``apply(params)`` and optionally ``on_signal(event)``.
        store: Parameter store; a default-initialized one when omitted.
        checkpoints: Checkpoint manager; built from the config when omitted.
        security: Security escalation machine; built from the config when omitted.
        resolver: Conflict resolver; built from the config when omitted.
        notifier: Callable receiving each :class:`Notification`.
        config: Anything accepted by :func:`rendersync.config.load_engine_config`.
        clock: Returns the current time in seconds since the epoch.
    """

    def __init__(
        self,
        adapters: Optional[Mapping[Any, Any]] = None,
        *,
        store: Optional[ParameterStore] = None,
        checkpoints: Optional[CheckpointManager] = None,
        security: Optional[SecurityEscalationMachine] = None,
        resolver: Optional[ConflictResolver] = None,
        notifier: Optional[Callable[[Notification], None]] = None,
        config: ConfigSource = None,
        clock: Callable[[], float] = time.time,
    ):
        self.config = load_engine_config(config)
        self._clock = clock
        self.adapters: Dict[Subsystem, Any] = {}
        for name, adapter in (adapters or {}).items():
            if not callable(getattr(adapter, "apply", None)):
                raise TypeError(f"adapter for {name!r} must define apply(params)")
            self.adapters[Subsystem.parse(name)] = adapter

        self.store = store if store is not None else ParameterStore()
        if checkpoints is None:
            if self.config.checkpoint_path:
                backing = JsonCheckpointStore(self.config.checkpoint_path, self.config.checkpoint_key)
            else:
                backing = MemoryCheckpointStore()
            checkpoints = CheckpointManager(backing, limit=self.config.checkpoint_limit, clock=clock)
        self.checkpoints = checkpoints
        self.security = security if security is not None else SecurityEscalationMachine(
            max_threats=self.config.max_threats,
            max_audit_entries=self.config.max_audit_entries,
            escalate_on_threat=self.config.escalate_on_threat,
            circuit_breaker_reset_s=self.config.circuit_breaker_reset_s,
            clock=clock,
        )
        self.resolver = resolver if resolver is not None else ConflictResolver(
            self.config.thresholds, self.config.max_resolution_passes
        )
        self._policy = ResolutionPolicy(self.config.validation_enabled, self.config.auto_resolve)
        self._notifier = notifier

        self._status = SyncStatus.IDLE
        self._conflicts: List[Conflict] = []
        self._published: Optional[ParameterState] = None
        self._queue: Deque[cmd.Command] = deque()
        self._deferred: Deque[cmd.Command] = deque()
        self._lock = threading.Lock()
        self._draining = False
        self._logs: Deque[LogEntry] = deque(maxlen=self.config.log_limit)
        self._notifications: Deque[Notification] = deque(maxlen=self.config.notification_limit)
        self._transitions: Deque[Transition] = deque(maxlen=TRANSITION_HISTORY_LIMIT)
        self._listeners: List[Callable[[SyncStatus, SyncStatus], None]] = []

        self._handlers: Dict[type, Callable[[Any], None]] = {
            cmd.UpdateSubsystem: self._on_update,
            cmd.ApplyPreset: self._on_apply_preset,
            cmd.SaveCheckpoint: self._on_save_checkpoint,
            cmd.RestoreCheckpoint: self._on_restore_checkpoint,
            cmd.Rollback: self._on_rollback,
            cmd.AutoResolve: self._on_auto_resolve,
            cmd.ManualResolve: self._on_manual_resolve,
            cmd.Ignore: self._on_ignore,
            cmd.ToggleValidation: self._on_toggle_validation,
            cmd.ToggleAutoResolve: self._on_toggle_auto_resolve,
            cmd.ClearLogs: self._on_clear_logs,
        }
        for command_type in cmd.SECURITY_COMMANDS:
            self._handlers[command_type] = self._on_security
        missing = set(cmd.ALL_COMMANDS) - set(self._handlers)
        if missing:
            raise RuntimeError(f"No handler for commands: {sorted(c.__name__ for c in missing)}")

        self.security.subscribe(self._on_security_signal)
        self.store.sync_security(self.security.snapshot())

    # -- read-only views -------------------------------------------------

    @property
    def status(self) -> SyncStatus:
        return self._status

    @property
    def is_idle(self) -> bool:
        return self._status is SyncStatus.IDLE

    @property
    def state(self) -> ParameterState:
        return self.store.state

    @property
    def published(self) -> Optional[ParameterState]:
        """Last state handed to the adapters, or None before the first publish."""
        return None if self._published is None else self._published.copy()

    @property
    def conflicts(self) -> List[Conflict]:
        return list(self._conflicts)

    @property
    def policy(self) -> ResolutionPolicy:
        return ResolutionPolicy(self._policy.validation_enabled, self._policy.auto_resolve)

    @property
    def logs(self) -> List[LogEntry]:
        return list(self._logs)

    @property
    def notifications(self) -> List[Notification]:
        return list(self._notifications)

    @property
    def transitions(self) -> List[Transition]:
        return list(self._transitions)

    @property
    def pending(self) -> int:
        with self._lock:
            return len(self._queue) + len(self._deferred)

    def subscribe(self, listener: Callable[[SyncStatus, SyncStatus], None]) -> Callable[[], None]:
        """Observe ``(previous, current)`` status transitions. Returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # -- command intake --------------------------------------------------

    def send(self, command: cmd.Command) -> SyncStatus:
        """Queue ``command`` and process the queue unless it is already being processed."""
        if not isinstance(command, cmd.Command) or type(command) not in self._handlers:
            raise TypeError(f"Unsupported command: {command!r}")
        with self._lock:
            self._queue.append(command)
            if self._draining:
                return self._status
            self._draining = True
        try:
            self._drain()
        except BaseException:
            with self._lock:
                self._draining = False
            raise
        return self._status

    def update(self, subsystem: Any, params: Mapping[str, Any]) -> SyncStatus:
        return self.send(cmd.UpdateSubsystem(subsystem, params))

    def _drain(self) -> None:
        while True:
            with self._lock:
                if self._status is SyncStatus.IDLE and self._deferred:
                    self._queue.extendleft(reversed(self._deferred))
                    self._deferred.clear()
                if not self._queue:
                    self._draining = False
                    return
                command = self._queue.popleft()
            self._process(command)

    def _process(self, command: cmd.Command) -> None:
        # the escalation machine has its own lifecycle and never waits on a conflict decision
        if isinstance(command, cmd.GLOBAL_COMMANDS + cmd.SECURITY_COMMANDS):
            self._handlers[type(command)](command)
            return
        if self._status is SyncStatus.CONFLICT_DETECTED and not isinstance(command, cmd.DECISION_COMMANDS):
            logger.debug("Deferring %s until the pending conflict is decided", type(command).__name__)
            with self._lock:
                self._deferred.append(command)
            return
        if self._status is SyncStatus.IDLE and isinstance(command, (cmd.AutoResolve, cmd.ManualResolve, cmd.Ignore)):
            logger.warning("Ignoring %s: no conflict is pending", type(command).__name__)
            self._log("no_pending_conflict", f"{type(command).__name__} ignored: no conflict pending", "low")
            return
        self._handlers[type(command)](command)

    # -- bookkeeping -----------------------------------------------------

    def _transition(self, status: SyncStatus) -> None:
        previous = self._status
        self._status = status
        self._transitions.append(Transition(previous, status, float(self._clock())))
        for listener in list(self._listeners):
            try:
                listener(previous, status)
            except Exception:
                logger.exception("Status listener failed on %s -> %s", previous.value, status.value)

    def _log(self, event: str, message: str, severity: str = "info", **details: Any) -> None:
        self._logs.append(LogEntry(float(self._clock()), event, message, severity, details))

    def _notify(self, conflict: Conflict) -> None:
        notification = Notification(
            id=uuid.uuid4().hex,
            severity=conflict.severity.value,
            message=conflict.message,
            suggestion=conflict.suggestion,
            timestamp=float(self._clock()),
            kind=conflict.kind.value,
        )
        self._notifications.append(notification)
        if self._notifier is not None:
            try:
                self._notifier(notification)
            except Exception:
                logger.exception("Notification sink failed")

    # -- cycle -----------------------------------------------------------

    def _run_cycle(self, reason: str) -> None:
        staged = self.store.state
        if not self._policy.validation_enabled:
            self._synchronize(staged, reason)
            return
        self._transition(SyncStatus.VALIDATING)
        conflicts = evaluate(staged, thresholds=self.resolver.thresholds)
        if not conflicts:
            self._synchronize(staged, reason)
            return
        self._enter_conflict(conflicts)
        if self.config.resolve_on_detect and self._policy.auto_resolve:
            self._auto_resolve()

    def _enter_conflict(self, conflicts: List[Conflict]) -> None:
        self._conflicts = list(conflicts)
        log_conflicts(conflicts)
        for conflict in conflicts:
            self._log(
                "conflict",
                conflict.message,
                conflict.severity.value,
                kind=conflict.kind.value,
                subsystems=sorted(s.value for s in conflict.subsystems),
                suggestion=conflict.suggestion,
            )
            self._notify(conflict)
        self._transition(SyncStatus.CONFLICT_DETECTED)

    def _synchronize(self, state: ParameterState, reason: str) -> None:
        self._transition(SyncStatus.SYNCHRONIZED)
        parts = split_state(state.to_dict(), tuple(s.value for s in self.adapters))
        failures = 0
        for subsystem, adapter in self.adapters.items():
            try:
                adapter.apply(parts[subsystem.value])
            except Exception as exc:
                failures += 1
                logger.exception("Adapter for %s failed to apply parameters", subsystem.value)
                self._log("adapter_error", f"{subsystem.value}: {exc}", "high", subsystem=subsystem.value)
        self._published = state.copy()
        self._conflicts = []
        logger.info("Synchronized render state (%s)", reason)
        self._log("synchronized", f"State synchronized ({reason})", failures=failures)
        self._transition(SyncStatus.IDLE)

    def _apply_resolution(self, result: ResolutionResult, reason: str) -> None:
        if result.outcome is ResolutionOutcome.RESOLVED:
            self.store.replace(result.state)
            self._log("resolved", f"Conflicts resolved ({reason})", applied=[k.value for k in result.applied])
            self._synchronize(self.store.state, reason)
            return
        if result.outcome is ResolutionOutcome.STILL_CONFLICTING:
            self.store.replace(result.state)
            self._log("resolution_failed", f"Resolution left conflicts ({reason})", "medium")
            self._enter_conflict(result.conflicts or self._conflicts)
            return
        # awaiting-decision: nothing changes until the operator decides
        logger.warning("AutoResolve ignored while auto-resolve is disabled")
        self._log("auto_resolve_disabled", "AutoResolve ignored: auto-resolve is disabled; awaiting a decision", "medium")
        if self._status is not SyncStatus.CONFLICT_DETECTED:
            self._transition(SyncStatus.CONFLICT_DETECTED)

    def _auto_resolve(self) -> None:
        if self._policy.auto_resolve:
            if self.config.checkpoint_before_auto_resolve:
                self.checkpoints.save(self.store.state, name="Before auto-resolve")
            self._transition(SyncStatus.RESOLVING)
        result = self.resolver.resolve(self.store.state, self._conflicts, self._policy)
        self._apply_resolution(result, "auto-resolve")

    def _restore(self, state: ParameterState) -> None:
        self.store.replace(state)
        self.store.sync_security(self.security.snapshot())

    # -- handlers --------------------------------------------------------

    def _on_update(self, command: cmd.UpdateSubsystem) -> None:
        self.store.update(command.subsystem, command.params)
        self._run_cycle(f"update {command.subsystem.value}")

    def _on_apply_preset(self, command: cmd.ApplyPreset) -> None:
        self.store.merge(presets.get(command.name))
        self._log("preset", f"Applied preset {command.name!r}")
        self._run_cycle(f"preset {command.name}")

    def _on_save_checkpoint(self, command: cmd.SaveCheckpoint) -> None:
        checkpoint = self.checkpoints.save(self.store.state, command.name)
        self._log("checkpoint_saved", f"Saved checkpoint {checkpoint.name!r}", id=checkpoint.id)

    def _on_restore_checkpoint(self, command: cmd.RestoreCheckpoint) -> None:
        state = self.checkpoints.restore(command.id)
        if state is None:
            logger.warning("No checkpoint to restore (id=%r)", command.id)
            self._log("checkpoint_missing", f"No checkpoint to restore (id={command.id!r})", "low")
            return
        self._restore(state)
        self._log("checkpoint_restored", "Checkpoint restored", id=command.id)
        self._run_cycle("restore checkpoint")

    def _on_rollback(self, command: cmd.Rollback) -> None:
        if self._status is SyncStatus.IDLE:
            self._on_restore_checkpoint(cmd.RestoreCheckpoint())
            return
        checkpoint = self.checkpoints.latest()
        result = self.resolver.rollback(self.store.state, checkpoint)
        if result.checkpoint_id is None:
            logger.warning("Rollback requested without any checkpoint; state unchanged")
            self._log("rollback_unavailable", "Rollback: no checkpoint available", "low")
            self._conflicts = []
            self._transition(SyncStatus.IDLE)
            return
        self._restore(result.state)
        self._log("rolled_back", "Rolled back to the latest checkpoint", id=result.checkpoint_id)
        self._synchronize(self.store.state, "rollback")

    def _on_auto_resolve(self, command: cmd.AutoResolve) -> None:
        self._auto_resolve()

    def _on_manual_resolve(self, command: cmd.ManualResolve) -> None:
        self._transition(SyncStatus.RESOLVING)
        result = self.resolver.manual(self.store.state, command.patch, self._conflicts)
        self._apply_resolution(result, "manual resolve")

    def _on_ignore(self, command: cmd.Ignore) -> None:
        result = self.resolver.ignore(self.store.state, self._conflicts)
        kinds = [c.kind.value for c in result.conflicts]
        logger.info("Operator accepted %d conflict(s): %s", len(kinds), ", ".join(kinds))
        self._log("conflicts_ignored", "Conflicts accepted by operator", "medium", kinds=kinds)
        self._synchronize(result.state, "ignore")

    def _on_toggle_validation(self, command: cmd.ToggleValidation) -> None:
        self._policy.validation_enabled = not self._policy.validation_enabled
        self._log("validation", f"Validation {'enabled' if self._policy.validation_enabled else 'disabled'}")

    def _on_toggle_auto_resolve(self, command: cmd.ToggleAutoResolve) -> None:
        self._policy.auto_resolve = not self._policy.auto_resolve
        self._log("auto_resolve", f"Auto-resolve {'enabled' if self._policy.auto_resolve else 'disabled'}")

    def _on_clear_logs(self, command: cmd.ClearLogs) -> None:
        self._logs.clear()
        self._notifications.clear()

    def _on_security(self, command: cmd.Command) -> None:
        machine = self.security
        if isinstance(command, cmd.Activate):
            accepted = machine.activate()
        elif isinstance(command, cmd.Deactivate):
            accepted = machine.deactivate()
        elif isinstance(command, cmd.Escalate):
            accepted = machine.escalate()
        elif isinstance(command, cmd.Deescalate):
            accepted = machine.deescalate()
        elif isinstance(command, cmd.SetLevel):
            accepted = machine.set_level(command.level)
        elif isinstance(command, cmd.ThreatDetected):
            accepted = machine.threat_detected(command.score, command.threats)
        elif isinstance(command, cmd.ThreatCleared):
            accepted = machine.threat_cleared(command.id)
        elif isinstance(command, cmd.TriggerAlert):
            accepted = machine.trigger_alert(command.pattern, command.config)
        elif isinstance(command, cmd.StopAlerts):
            accepted = machine.stop_alerts()
        elif isinstance(command, cmd.PerformanceDegraded):
            accepted = machine.performance_degraded(command.metrics)
        elif isinstance(command, cmd.PerformanceRecovered):
            accepted = machine.performance_recovered()
        elif isinstance(command, cmd.BridgeConnect):
            accepted = machine.bridge_connect(command.system)
        else:
            accepted = machine.bridge_disconnect(command.system)
        self._log(
            "security",
            f"{type(command).__name__} {'accepted' if accepted else 'rejected'}",
            "info" if accepted else "low",
        )
        self._publish_security()

    def _publish_security(self) -> None:
        state = self.store.sync_security(self.security.snapshot())
        if self._published is not None:
            self._published.security = state.security.copy()
        adapter = self.adapters.get(Subsystem.SECURITY)
        if adapter is None:
            return
        try:
            adapter.apply(state[Subsystem.SECURITY])
        except Exception as exc:
            logger.exception("Adapter for security failed to apply parameters")
            self._log("adapter_error", f"security: {exc}", "high", subsystem="security")

    def _on_security_signal(self, event: SignalEvent) -> None:
        self._log("security_signal", event.signal.value, level=event.level.value)
        for target in sorted(event.targets, key=lambda s: s.value):
            if not self.security.bridges.is_connected(target):
                continue
            handler = getattr(self.adapters.get(target), "on_signal", None)
            if handler is None:
                continue
            try:
                handler(event)
            except Exception as exc:
                logger.exception("Adapter for %s failed to handle %s", target.value, event.signal.value)
                self._log("adapter_error", f"{target.value}: {exc}", "high", subsystem=target.value)

    # -- lifecycle -------------------------------------------------------

    def close(self) -> None:
        """Flush pending checkpoint writes and stop the persistence worker."""
        self.checkpoints.flush()
        self.checkpoints.cleanup()


__all__ = ["SyncStatus", "Notification", "LogEntry", "Transition", "RenderSyncDispatcher"]
