import subprocess
import typing

import pytest

from thermal_sentinel.config import Settings
from thermal_sentinel.models import shutdown as shutdown_models
from thermal_sentinel.models.shutdown import (
    Counting,
    CountingProgress,
    EmergencyStarted,
    GracePeriod,
    GracePeriodCountdown,
    GracePeriodStarted,
    NoEvent,
    Normal,
    Recovered,
    Shutdown,
    ShutdownNow,
    ShutdownState,
)
from thermal_sentinel.services import shutdown
from thermal_sentinel.services.shutdown import (
    ShutdownExecutor,
    ShutdownManager,
    shutdown_command,
)


def _manager(**overrides):
    params = dict(
        config_enabled=True,
        env_opt_in=True,
        emergency_threshold=100.0,
        critical_threshold=95.0,
        sustained_secs=30,
        grace_secs=30,
    )
    params.update(overrides)
    return ShutdownManager(**params)


def test_below_emergency_stays_normal():
    manager = _manager()
    assert manager.tick(99.9, now=0.0) == NoEvent()
    assert isinstance(manager.state, Normal)


def test_threshold_boundaries_are_inclusive_and_exclusive():
    """
    Genau 100.0 startet die Eskalation, genau 95.0 zaehlt weiter,
    erst unterhalb von 95.0 wird zurueckgesetzt.
    """
    manager = _manager()

    assert manager.tick(100.0, now=0.0) == EmergencyStarted()
    assert manager.tick(95.0, now=1.0) == CountingProgress(elapsed_secs=1, required_secs=30)
    assert manager.tick(94.9, now=2.0) == Recovered()
    assert isinstance(manager.state, Normal)


def test_grace_period_holds_at_exact_critical_threshold():
    manager = _manager(sustained_secs=5, grace_secs=30)
    manager.tick(100.0, now=0.0)
    manager.tick(100.0, now=5.0)

    assert manager.tick(95.0, now=6.0) == GracePeriodCountdown(remaining_secs=29)
    assert manager.tick(94.9, now=7.0) == Recovered()


def test_full_escalation_to_shutdown():
    manager = _manager()

    assert manager.tick(101.0, now=0.0) == EmergencyStarted()
    assert isinstance(manager.state, Counting)

    assert manager.tick(101.0, now=10.0) == CountingProgress(elapsed_secs=10, required_secs=30)
    # Hysterese: zwischen critical und emergency wird weiter gezaehlt
    assert manager.tick(96.0, now=20.5) == CountingProgress(elapsed_secs=20, required_secs=30)

    assert manager.tick(101.0, now=30.0) == GracePeriodStarted()
    assert isinstance(manager.state, GracePeriod)

    assert manager.tick(101.0, now=45.0) == GracePeriodCountdown(remaining_secs=15)
    assert manager.tick(101.0, now=60.0) == ShutdownNow()
    assert isinstance(manager.state, Shutdown)

    # Shutdown ist terminal, auch wenn die Temperatur faellt
    assert manager.tick(40.0, now=61.0) == ShutdownNow()
    assert isinstance(manager.state, Shutdown)


def test_recovery_below_critical_during_counting():
    manager = _manager()
    manager.tick(101.0, now=0.0)

    assert manager.tick(94.9, now=5.0) == Recovered()
    assert isinstance(manager.state, Normal)


def test_recovery_below_critical_during_grace_period():
    manager = _manager(sustained_secs=5)
    manager.tick(101.0, now=0.0)
    manager.tick(101.0, now=5.0)
    assert isinstance(manager.state, GracePeriod)

    assert manager.tick(90.0, now=6.0) == Recovered()
    assert isinstance(manager.state, Normal)


def test_zero_grace_period_shuts_down_on_next_tick():
    manager = _manager(sustained_secs=5, grace_secs=0)
    manager.tick(101.0, now=0.0)
    assert manager.tick(101.0, now=5.0) == GracePeriodStarted()
    assert manager.tick(101.0, now=5.0) == ShutdownNow()


def test_abort_resets_active_state_only():
    manager = _manager()
    assert manager.abort() is False

    manager.tick(101.0, now=0.0)
    assert manager.abort() is True
    assert isinstance(manager.state, Normal)
    assert manager.abort() is False


def test_abort_from_shutdown_state():
    manager = _manager(sustained_secs=5, grace_secs=0)
    manager.tick(101.0, now=0.0)
    manager.tick(101.0, now=5.0)
    manager.tick(101.0, now=5.0)
    assert isinstance(manager.state, Shutdown)

    assert manager.abort() is True
    assert manager.tick(101.0, now=10.0) == EmergencyStarted()


def test_abort_during_grace_period():
    manager = _manager(sustained_secs=5, grace_secs=30)
    manager.tick(101.0, now=0.0)
    assert manager.tick(101.0, now=5.0) == GracePeriodStarted()
    assert isinstance(manager.state, GracePeriod)

    assert manager.abort() is True
    assert isinstance(manager.state, Normal)
    assert manager.tick(101.0, now=6.0) == EmergencyStarted()


@pytest.mark.parametrize(
    "config_enabled, env_opt_in",
    [(True, False), (False, True), (False, False)],
)
def test_both_gates_are_required(config_enabled, env_opt_in):
    manager = _manager(config_enabled=config_enabled, env_opt_in=env_opt_in)

    assert manager.enabled is False
    assert manager.tick(120.0, now=0.0) == NoEvent()
    assert manager.tick(120.0, now=100.0) == NoEvent()
    assert isinstance(manager.state, Normal)


def test_from_settings_reads_both_gates():
    settings = Settings(auto_shutdown_enabled=True, auto_shutdown_confirmed=False)
    assert ShutdownManager.from_settings(settings).enabled is False

    settings = Settings(auto_shutdown_enabled=True, auto_shutdown_confirmed=True, shutdown_grace_secs=10)
    manager = ShutdownManager.from_settings(settings)
    assert manager.enabled is True
    assert manager.grace_secs == 10


def test_schedule_window_plain_and_wrapping():
    day = _manager(schedule_start=8, schedule_end=18)
    assert day.in_schedule(8) is True
    assert day.in_schedule(17) is True
    assert day.in_schedule(18) is False
    assert day.in_schedule(3) is False

    night = _manager(schedule_start=22, schedule_end=6)
    assert night.in_schedule(23) is True
    assert night.in_schedule(0) is True
    assert night.in_schedule(5) is True
    assert night.in_schedule(6) is False
    assert night.in_schedule(12) is False

    always = _manager()
    assert all(always.in_schedule(hour) for hour in range(24))


def test_leaving_schedule_resets_active_state(monkeypatch):
    """
    Ausserhalb des Zeitfensters wird ein aktiver Zustand einmalig mit
    Recovered auf Normal zurueckgesetzt, danach nur noch NoEvent.
    """
    hour = {"value": 10}
    monkeypatch.setattr(shutdown, "_current_hour", lambda: hour["value"])
    manager = _manager(schedule_start=8, schedule_end=18)

    manager.tick(101.0, now=0.0)
    assert isinstance(manager.state, Counting)

    hour["value"] = 19
    assert manager.tick(101.0, now=5.0) == Recovered()
    assert isinstance(manager.state, Normal)
    assert manager.tick(101.0, now=6.0) == NoEvent()


def test_leaving_schedule_discards_grace_period(monkeypatch):
    hour = {"value": 23}
    monkeypatch.setattr(shutdown, "_current_hour", lambda: hour["value"])
    manager = _manager(sustained_secs=5, grace_secs=30, schedule_start=22, schedule_end=6)

    manager.tick(101.0, now=0.0)
    manager.tick(101.0, now=5.0)
    assert isinstance(manager.state, GracePeriod)

    hour["value"] = 6
    assert manager.tick(101.0, now=10.0) == Recovered()
    assert isinstance(manager.state, Normal)


def test_state_labels_and_seconds_remaining():
    assert Normal().label == "Normal"
    assert Normal().is_active is False
    assert Normal().seconds_remaining(10.0) is None

    counting = Counting(since=100.0, required_secs=30)
    assert counting.label == "Thermal Warning - Counting"
    assert counting.is_active is True
    assert counting.seconds_remaining(112.7) == 18
    assert counting.seconds_remaining(500.0) == 0

    grace = GracePeriod(since=0.0, grace_secs=30)
    assert grace.label == "SHUTDOWN IMMINENT"
    assert grace.seconds_remaining(10.0) == 20

    assert Shutdown().label == "SHUTTING DOWN"
    assert Shutdown().seconds_remaining(0.0) is None


def test_every_state_defines_its_own_label():
    assert "label" not in vars(shutdown_models._State)

    states = [Normal(), Counting(since=0.0, required_secs=5), GracePeriod(since=0.0, grace_secs=5), Shutdown()]
    assert {type(state) for state in states} == set(typing.get_args(ShutdownState))
    for state in states:
        assert "label" in vars(type(state))
    assert len({state.label for state in states}) == 4


def test_shutdown_command_per_platform():
    assert shutdown_command("Windows") == ["powershell.exe", "-Command", "Stop-Computer -Force"]
    assert shutdown_command("Linux", wsl=True) == ["powershell.exe", "-Command", "Stop-Computer -Force"]
    assert shutdown_command("Darwin") == ["shutdown", "-h", "now"]
    assert shutdown_command("Linux", wsl=False) == ["systemctl", "poweroff"]


class FakeProcess:
    def __init__(self, returncode=None):
        self.returncode = returncode
        self.polls = 0

    def poll(self):
        self.polls += 1
        return self.returncode


def test_executor_fires_once_until_reset(monkeypatch):
    spawned = []

    def fake_popen(command):
        spawned.append(command)
        return FakeProcess()

    monkeypatch.setattr(subprocess, "Popen", fake_popen)
    executor = ShutdownExecutor(command=["systemctl", "poweroff"])

    assert executor.execute() is True
    assert executor.execute() is False
    assert spawned == [["systemctl", "poweroff"]]

    executor.reset()
    assert executor.execute() is True
    assert len(spawned) == 2


def test_executor_failure_raises_and_stays_armed(monkeypatch):
    def failing_popen(command):
        raise FileNotFoundError(2, "No such file or directory", command[0])

    monkeypatch.setattr(subprocess, "Popen", failing_popen)
    executor = ShutdownExecutor(command=["systemctl", "poweroff"])

    with pytest.raises(RuntimeError) as excinfo:
        executor.execute()

    assert "systemctl" in str(excinfo.value)
    assert executor.fired is False


def test_executor_keeps_and_reaps_process_handle(monkeypatch):
    process = FakeProcess()
    monkeypatch.setattr(subprocess, "Popen", lambda command: process)
    executor = ShutdownExecutor(command=["systemctl", "poweroff"])

    executor.execute()
    assert executor.process is process

    # noch laufend: Handle bleibt erhalten
    assert executor.execute() is False
    assert executor.process is process
    assert process.polls == 1

    process.returncode = 0
    executor.reset()
    assert executor.process is None
    assert process.polls == 2
