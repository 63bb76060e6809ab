"""Temperature reconciliation: smoothing, staleness fallback and simulation."""

import math
import random

import pytest

from rcctrl.core import TelemetryConfig
from rcctrl.protocol import TemperatureFrame, UnrecognizedFrame
from rcctrl.telemetry import (
    SimulationModel,
    Source,
    TelemetryReconciler,
    temperature_status,
)


class ExtremeRng:
    """Always pushes upward and always spikes."""

    def uniform(self, a, b):
        return b

    def random(self):
        return 0.0


@pytest.fixture
def config():
    return TelemetryConfig()


@pytest.fixture
def reconciler(config, clock):
    return TelemetryReconciler(config, rng=random.Random(7), clock=clock)


def test_initial_state(reconciler):
    assert reconciler.displayed_value == 25.0
    assert reconciler.receiving_hardware is False
    assert reconciler.last_hardware_value is None
    assert reconciler.reading.source is Source.SIMULATED


def test_converges_to_hardware_reading_without_overshoot(reconciler, config):
    assert reconciler.handle_event(TemperatureFrame(27.5))

    values = []
    for _ in range(5):
        reading = reconciler.display_tick()
        assert reading.source is Source.HARDWARE
        values.append(reading.value)

    assert values == [25.5, 26.0, 26.5, 27.0, 27.5]

    # No further drift while the reading is fresh
    for _ in range(10):
        assert reconciler.display_tick().value == 27.5


@pytest.mark.parametrize("target", [20.0, 21.3, 44.4, 70.0, 80.0, -12.0, 125.0])
def test_convergence_bound(config, clock, target):
    reconciler = TelemetryReconciler(config, rng=random.Random(1), clock=clock)
    start = reconciler.displayed_value
    assert reconciler.accept(target)

    ticks = math.ceil(abs(target - start) / config.max_step)
    previous = start
    for _ in range(ticks):
        value = reconciler.display_tick().value
        assert abs(value - previous) <= config.max_step + 1e-9
        assert min(start, target) <= value <= max(start, target)
        previous = value
    assert reconciler.displayed_value == target


@pytest.mark.parametrize("value", [999.0, -40.5, 125.1, float("nan"), float("inf")])
def test_rejected_values_leave_state_unchanged(reconciler, value):
    reconciler.accept(30.0)
    before = (
        reconciler.last_hardware_value,
        reconciler.last_hardware_timestamp,
        reconciler.receiving_hardware,
        reconciler.simulation.baseline,
    )

    assert reconciler.handle_event(TemperatureFrame(value)) is False

    after = (
        reconciler.last_hardware_value,
        reconciler.last_hardware_timestamp,
        reconciler.receiving_hardware,
        reconciler.simulation.baseline,
    )
    assert after == before


def test_out_of_range_reading_keeps_simulated_source(reconciler):
    assert reconciler.accept(999.0) is False
    assert reconciler.receiving_hardware is False
    assert reconciler.display_tick().source is Source.SIMULATED


def test_unrecognized_frames_are_ignored(reconciler):
    assert reconciler.handle_event(UnrecognizedFrame("HELLO")) is False
    assert reconciler.handle_event(None) is False
    assert reconciler.last_hardware_value is None


def test_accept_rebases_simulation(reconciler):
    reconciler.simulation.trend = 0.4
    reconciler.accept(41.0)
    assert reconciler.simulation.baseline == 41.0
    assert reconciler.simulation.trend == 0.0


def test_rebase_clamps_to_nominal_range(reconciler, config):
    reconciler.accept(100.0)
    assert reconciler.last_hardware_value == 100.0
    assert reconciler.simulation.baseline == config.nominal_max


def test_request_tick_without_hardware_requests(reconciler):
    assert reconciler.request_tick() is True
    assert reconciler.receiving_hardware is False


def test_request_tick_while_fresh_does_not_request(reconciler, clock):
    reconciler.accept(30.0)
    clock.advance(3.0)
    assert reconciler.request_tick() is False
    assert reconciler.receiving_hardware is True


def test_staleness_falls_back_on_next_request_tick(reconciler, clock):
    reconciler.accept(30.0)
    for _ in range(20):
        reconciler.display_tick()
    assert reconciler.displayed_value == 30.0

    clock.advance(7.0)
    # Fallback is lagged: until the request tick runs, hardware stays authoritative
    assert reconciler.display_tick().source is Source.HARDWARE
    assert reconciler.receiving_hardware is True

    assert reconciler.request_tick() is True
    assert reconciler.receiving_hardware is False

    for _ in range(5):
        clock.advance(0.5)
        reading = reconciler.display_tick()
        assert reading.source is Source.SIMULATED
        assert reconciler.simulation.last_tick == clock.now


def test_fresh_reading_after_fallback_resumes_hardware(reconciler, clock):
    reconciler.accept(30.0)
    clock.advance(10.0)
    reconciler.request_tick()
    assert reconciler.receiving_hardware is False

    reconciler.accept(31.0)
    assert reconciler.receiving_hardware is True
    assert reconciler.request_tick() is False
    assert reconciler.display_tick().source is Source.HARDWARE


def test_reconciler_seeded_from_baseline(config, clock):
    reconciler = TelemetryReconciler(config, baseline=42.0, clock=clock)
    assert reconciler.displayed_value == 42.0
    assert reconciler.simulation.baseline == 42.0
    assert reconciler.receiving_hardware is False


def test_simulation_is_deterministic_for_a_seed(config):
    a = SimulationModel(30.0, config.nominal_min, config.nominal_max)
    b = SimulationModel(30.0, config.nominal_min, config.nominal_max)
    rng_a, rng_b = random.Random(99), random.Random(99)
    assert [a.step(rng_a, t) for t in range(50)] == [b.step(rng_b, t) for t in range(50)]
    assert a.last_tick == 49


@pytest.mark.parametrize("seed", [0, 1, 2, 3])
def test_simulation_stays_in_nominal_range(config, seed):
    model = SimulationModel(config.nominal_max, config.nominal_min, config.nominal_max)
    rng = random.Random(seed)
    for tick in range(5000):
        value = model.step(rng, float(tick))
        assert config.nominal_min <= value <= config.nominal_max


def test_simulation_clamps_spikes(config):
    model = SimulationModel(69.9, config.nominal_min, config.nominal_max)
    rng = ExtremeRng()
    for tick in range(100):
        assert model.step(rng, float(tick)) <= config.nominal_max
    assert model.baseline == config.nominal_max


def test_simulated_display_stays_in_nominal_range(config, clock):
    reconciler = TelemetryReconciler(config, rng=random.Random(3), clock=clock)
    for _ in range(2000):
        value = reconciler.display_tick().value
        assert config.nominal_min <= value <= config.nominal_max


@pytest.mark.parametrize(
    "value, label",
    [
        (10.0, "COLD"),
        (24.9, "COLD"),
        (25.0, "COOL"),
        (40.0, "NORMAL"),
        (50.0, "WARM"),
        (60.0, "HOT"),
        (65.0, "CRITICAL"),
        (90.0, "CRITICAL"),
    ],
)
def test_temperature_status(value, label):
    assert temperature_status(value) == label
