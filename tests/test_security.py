# tests/test_security.py
# Tests for the security escalation machine: level bounds, threats, alerts, performance and bridges
# RELEVANT FILES: python/rendersync/security.py

from __future__ import annotations

import logging
import random

import pytest

from rendersync.params import Subsystem
from rendersync.security import (
    AlertPattern,
    CircuitBreakerState,
    PerformanceMode,
    SecurityEscalationMachine,
    SecurityLevel,
    SecuritySignal,
)


@pytest.fixture
def machine(clock) -> SecurityEscalationMachine:
    m = SecurityEscalationMachine(clock=clock)
    m.activate()
    return m


def test_starts_inactive_and_rejects_set_level() -> None:
    m = SecurityEscalationMachine()
    assert not m.is_active
    assert m.set_level("lockdown") is False
    assert not m.is_active
    assert m.level is SecurityLevel.NORMAL


def test_activate_resets_and_connects_own_bridge(machine) -> None:
    assert machine.is_active
    assert machine.level is SecurityLevel.NORMAL
    assert machine.threat_score == 0.0
    assert machine.threats == ()
    assert machine.alerts == ()
    assert machine.bridges.connected() == {Subsystem.SECURITY}
    assert machine.activate() is False


def test_escalate_and_deescalate_are_clamped(machine) -> None:
    for _ in range(6):
        machine.escalate()
    assert machine.level is SecurityLevel.LOCKDOWN
    for _ in range(6):
        machine.deescalate()
    assert machine.level is SecurityLevel.NORMAL


@pytest.mark.parametrize("seed", [0, 1, 7, 42])
def test_random_escalation_sequences_stay_in_bounds(machine, seed: int) -> None:
    rng = random.Random(seed)
    for _ in range(200):
        before = machine.level
        if rng.random() < 0.5:
            machine.escalate()
            expected = before.up()
        else:
            machine.deescalate()
            expected = before.down()
        assert machine.level is expected
        assert machine.level in SecurityLevel


def test_level_order() -> None:
    assert [lvl.index for lvl in SecurityLevel] == [0, 1, 2, 3]
    assert SecurityLevel.LOCKDOWN.up() is SecurityLevel.LOCKDOWN
    assert SecurityLevel.NORMAL.down() is SecurityLevel.NORMAL
    with pytest.raises(ValueError, match="Unknown security level"):
        SecurityLevel.parse("panic")


def test_set_level_adopts_performance_mode(machine) -> None:
    assert machine.set_level("alert") is True
    assert machine.level is SecurityLevel.ALERT
    assert machine.performance_mode is PerformanceMode.REDUCED
    machine.set_level(SecurityLevel.LOCKDOWN)
    assert machine.performance_mode is PerformanceMode.MINIMAL
    assert machine.set_level("panic") is False
    assert machine.level is SecurityLevel.LOCKDOWN


def test_threat_score_replaces_and_threats_accumulate(machine) -> None:
    machine.threat_detected(30, [{"id": "t1", "type": "shader"}])
    machine.threat_detected(60, [{"id": "t2", "type": "memory"}])
    assert machine.threat_score == 60
    assert len(machine.threats) == 2
    assert machine.level is SecurityLevel.ALERT


def test_threats_without_escalation(clock) -> None:
    m = SecurityEscalationMachine(escalate_on_threat=False, clock=clock)
    m.activate()
    m.threat_detected(99, ["t1"])
    assert m.level is SecurityLevel.NORMAL
    assert m.threats[0].id == "t1"


@pytest.mark.parametrize(
    "score, threats, expected_score, expected_count",
    [
        (None, None, 10.0, 1),
        ("high", 42, 10.0, 1),
        (float("nan"), [None, 3.5], 10.0, 1),
        (-5, [None, {"id": "x"}], 0.0, 2),
        (20, {"id": "single"}, 20.0, 2),
    ],
)
def test_malformed_threat_payloads_are_absorbed(machine, score, threats, expected_score, expected_count) -> None:
    machine.threat_detected(10, [{"id": "seed"}])
    assert machine.threat_detected(score, threats) is True
    assert machine.threat_score == pytest.approx(expected_score)
    assert len(machine.threats) == expected_count


def test_threats_are_capped_oldest_first(clock) -> None:
    m = SecurityEscalationMachine(max_threats=3, escalate_on_threat=False, clock=clock)
    m.activate()
    m.threat_detected(1, [{"id": f"t{i}"} for i in range(5)])
    assert [t.id for t in m.threats] == ["t2", "t3", "t4"]


def test_threat_cleared_removes_only_matching(machine) -> None:
    machine.threat_detected(5, [{"id": "a"}, {"id": "b"}])
    machine.threat_cleared("a")
    assert [t.id for t in machine.threats] == ["b"]
    machine.threat_cleared("missing")
    assert [t.id for t in machine.threats] == ["b"]


def test_alerts(machine) -> None:
    machine.trigger_alert("flash")
    machine.trigger_alert(AlertPattern.SCANNER, {"color": "#00FF00", "intensity": 0.5})
    first, second = machine.alerts
    assert (first.color, first.intensity, first.duration_ms) == ("#ff0000", 0.8, 200)
    assert (second.color, second.intensity, second.duration_ms) == ("#00ff00", 0.5, 2000)
    assert machine.trigger_alert("sparkle") is False
    machine.stop_alerts()
    assert machine.alerts == ()


class TestPerformance:
    def test_low_fps_opens_breaker(self, machine):
        machine.performance_degraded({"fps": 20})
        assert machine.performance_mode is PerformanceMode.MINIMAL
        assert machine.circuit_breaker is CircuitBreakerState.OPEN

    def test_mid_fps_reduces(self, machine):
        machine.performance_degraded({"fps": 40})
        assert machine.performance_mode is PerformanceMode.REDUCED
        assert machine.circuit_breaker is CircuitBreakerState.CLOSED

    def test_good_fps_leaves_mode(self, machine):
        machine.performance_degraded({"fps": 60})
        assert machine.performance_mode is PerformanceMode.NORMAL

    @pytest.mark.parametrize(
        "metrics, mode",
        [
            ({"fps": -10, "memory": -5, "cpu": 250}, PerformanceMode.MINIMAL),
            ({"fps": float("nan")}, PerformanceMode.NORMAL),
            ({"fps": "fast"}, PerformanceMode.NORMAL),
            (None, PerformanceMode.NORMAL),
            ([1, 2, 3], PerformanceMode.NORMAL),
        ],
    )
    def test_malformed_metrics_never_raise(self, machine, metrics, mode):
        assert machine.performance_degraded(metrics) is True
        assert machine.performance_mode is mode

    def test_recovery_closes_breaker(self, machine):
        machine.performance_degraded({"fps": 5})
        machine.performance_recovered()
        assert machine.performance_mode is PerformanceMode.NORMAL
        assert machine.circuit_breaker is CircuitBreakerState.CLOSED

    def test_breaker_half_opens_after_reset_time(self, machine, clock):
        machine.performance_degraded({"fps": 5})
        clock.advance(4.9)
        assert machine.circuit_breaker is CircuitBreakerState.OPEN
        clock.advance(0.2)
        assert machine.circuit_breaker is CircuitBreakerState.HALF_OPEN
        assert machine.snapshot()["circuitBreaker"] == "half-open"


class TestSignals:
    def setup_method(self):
        self.events = []

    def _machine(self, clock):
        m = SecurityEscalationMachine(clock=clock)
        m.subscribe(self.events.append)
        m.activate()
        self.events.clear()
        return m

    def test_entering_alert_reduces_effects(self, clock):
        m = self._machine(clock)
        m.escalate()
        m.escalate()
        signals = [e.signal for e in self.events]
        assert signals == [
            SecuritySignal.LEVEL_CHANGED,
            SecuritySignal.LEVEL_CHANGED,
            SecuritySignal.REDUCE_EFFECTS_QUALITY,
        ]
        assert self.events[-1].targets == {Subsystem.BLOOM, Subsystem.PBR}

    def test_lockdown_with_open_breaker(self, clock):
        m = self._machine(clock)
        m.performance_degraded({"fps": 10})
        m.set_level("lockdown")
        signals = [e.signal for e in self.events]
        assert SecuritySignal.SECURED_HDR_MODE in signals
        assert SecuritySignal.MINIMAL_LIGHTING_MODE in signals

    def test_lockdown_with_half_open_breaker(self, clock):
        m = self._machine(clock)
        m.performance_degraded({"fps": 10})
        clock.advance(10)
        m.set_level("lockdown")
        signals = [e.signal for e in self.events]
        assert SecuritySignal.SECURED_HDR_MODE in signals
        assert SecuritySignal.MINIMAL_LIGHTING_MODE not in signals

    def test_fresh_failure_reopens_half_open_breaker(self, clock):
        m = self._machine(clock)
        m.performance_degraded({"fps": 10})
        clock.advance(6)
        assert m.circuit_breaker is CircuitBreakerState.HALF_OPEN
        m.performance_degraded({"fps": 10})
        assert m.circuit_breaker is CircuitBreakerState.OPEN
        m.set_level("lockdown")
        assert SecuritySignal.MINIMAL_LIGHTING_MODE in [e.signal for e in self.events]
        clock.advance(4)
        assert m.circuit_breaker is CircuitBreakerState.OPEN

    def test_no_signal_when_level_is_unchanged(self, clock):
        m = self._machine(clock)
        m.set_level("lockdown")
        self.events.clear()
        m.escalate()
        assert self.events == []

    def test_failing_listener_is_logged(self, clock, caplog):
        m = self._machine(clock)

        def boom(event):
            raise RuntimeError("listener exploded")

        m.subscribe(boom)
        with caplog.at_level(logging.ERROR, logger="rendersync.security"):
            m.escalate()
        assert m.level is SecurityLevel.SCANNING
        assert "listener failed" in caplog.text
        assert len(self.events) == 1

    def test_unsubscribe(self, clock):
        m = self._machine(clock)
        unsubscribe = m.subscribe(lambda e: None)
        unsubscribe()
        unsubscribe()


class TestBridges:
    def test_bridge_commands_while_inactive_are_noops(self):
        m = SecurityEscalationMachine()
        assert m.bridge_connect("bloom") is False
        assert m.bridge_disconnect(Subsystem.PBR) is False
        assert m.bridges.connected() == frozenset()

    def test_connect_and_disconnect(self, machine):
        machine.bridge_connect("bloom")
        assert machine.bridges.is_connected(Subsystem.BLOOM)
        machine.bridge_disconnect("bloom")
        assert not machine.bridges.is_connected("bloom")
        assert machine.bridges.to_dict()["security"] is True

    def test_unknown_endpoint(self, machine):
        with pytest.raises(ValueError):
            machine.bridge_connect("warp-drive")


def test_deactivate_is_a_full_reset(machine) -> None:
    machine.set_level("alert")
    machine.threat_detected(40, ["t1"])
    machine.trigger_alert("pulse")
    machine.bridge_connect("lighting")
    assert machine.deactivate() is True
    assert not machine.is_active
    assert machine.level is SecurityLevel.NORMAL
    assert machine.threat_score == 0.0
    assert machine.threats == ()
    assert machine.alerts == ()
    assert machine.bridges.connected() == frozenset()
    assert machine.escalate() is False


def test_audit_log_is_bounded(clock) -> None:
    m = SecurityEscalationMachine(max_audit_entries=5, clock=clock)
    m.activate()
    for _ in range(10):
        m.escalate()
    entries = m.audit_log
    assert len(entries) == 5
    assert all(e.event == "escalate" for e in entries)


def test_rejected_commands_are_logged(caplog: pytest.LogCaptureFixture) -> None:
    m = SecurityEscalationMachine()
    with caplog.at_level(logging.WARNING, logger="rendersync.security"):
        m.escalate()
    assert "Rejected security command escalate" in caplog.text


def test_snapshot_and_to_dict(machine) -> None:
    machine.threat_detected(12.5, [{"id": "t", "severity": 3}])
    snapshot = machine.snapshot()
    assert snapshot == {
        "active": True,
        "level": "normal",
        "threatScore": 12.5,
        "performanceMode": "normal",
        "circuitBreaker": "closed",
    }
    full = machine.to_dict()
    assert full["threats"][0]["severity"] == 3.0
    assert full["bridges"]["security"] is True
