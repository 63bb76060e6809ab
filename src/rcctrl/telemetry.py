"""
Temperature telemetry reconciliation.

The vehicle reports ``TEMP:<float>`` frames when asked, but the link can go
quiet at any time. ``TelemetryReconciler`` keeps a single displayed value
that follows the hardware while it is reporting and a bounded random-walk
simulation otherwise, moving the visible value by a limited step per tick
so the gauge never jumps.
"""

import logging
import math
import random
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from .core import TelemetryConfig
from .protocol import InboundEvent, TemperatureFrame

logger = logging.getLogger(__name__)

# Random-walk tuning
TREND_DECAY = 0.9
TREND_JITTER = 0.05
NOISE = 0.1
SPIKE_PROBABILITY = 0.02
SPIKE_MAGNITUDE = 2.0

# Upper bounds of the status bands shown next to the gauge
STATUS_BANDS = (
    (25.0, "COLD"),
    (35.0, "COOL"),
    (45.0, "NORMAL"),
    (55.0, "WARM"),
    (65.0, "HOT"),
)


class Source(Enum):
    HARDWARE = "hardware"
    SIMULATED = "simulated"


@dataclass(frozen=True)
class TemperatureReading:
    value: float
    source: Source
    timestamp: float


def temperature_status(value: float) -> str:
    """Classify a temperature into COLD/COOL/NORMAL/WARM/HOT/CRITICAL."""
    for upper, label in STATUS_BANDS:
        if value < upper:
            return label
    return "CRITICAL"


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


@dataclass
class SimulationModel:
    """Bounded random walk standing in for the sensor when it is silent."""

    baseline: float
    low: float
    high: float
    trend: float = 0.0
    last_tick: Optional[float] = None

    def step(self, rng: random.Random, now: float) -> float:
        """Advance one tick and return the new simulated value."""
        self.trend = self.trend * TREND_DECAY + rng.uniform(-TREND_JITTER, TREND_JITTER)
        value = self.baseline + self.trend + rng.uniform(-NOISE, NOISE)
        value = _clamp(value, self.low, self.high)
        if rng.random() < SPIKE_PROBABILITY:
            value = _clamp(
                value + rng.uniform(-SPIKE_MAGNITUDE, SPIKE_MAGNITUDE),
                self.low,
                self.high,
            )
        self.baseline = value
        self.last_tick = now
        return value

    def rebase(self, value: float) -> None:
        """Restart the walk from an observed hardware value."""
        self.baseline = _clamp(value, self.low, self.high)
        self.trend = 0.0


class TelemetryReconciler:
    """Merges hardware temperature reports with the simulation model.

    Call ``display_tick`` on the short display interval and ``request_tick``
    on the longer request interval. Staleness is only re-evaluated by the
    request tick, so falling back to simulation lags the hardware going
    quiet by up to one request interval.
    """

    def __init__(
        self,
        config: Optional[TelemetryConfig] = None,
        baseline: Optional[float] = None,
        rng: Optional[random.Random] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config or TelemetryConfig()
        self._rng = rng or random.Random()
        self._clock = clock

        seed = self.config.default_temperature if baseline is None else baseline
        self.simulation = SimulationModel(
            baseline=_clamp(seed, self.config.nominal_min, self.config.nominal_max),
            low=self.config.nominal_min,
            high=self.config.nominal_max,
        )

        self.last_hardware_value: Optional[float] = None
        self.last_hardware_timestamp: Optional[float] = None
        self.receiving_hardware = False
        self.displayed_value = self.simulation.baseline
        self.source = Source.SIMULATED
        self._updated_at = clock()

    @property
    def reading(self) -> TemperatureReading:
        """The value currently shown to the user."""
        return TemperatureReading(self.displayed_value, self.source, self._updated_at)

    def in_sanity_range(self, value: float) -> bool:
        return self.config.sanity_min <= value <= self.config.sanity_max

    def is_recent(self, now: Optional[float] = None) -> bool:
        """True if an accepted hardware reading is younger than the staleness threshold."""
        if self.last_hardware_timestamp is None:
            return False
        now = self._clock() if now is None else now
        return now - self.last_hardware_timestamp < self.config.staleness_threshold

    def accept(self, value: float) -> bool:
        """Record a hardware temperature.

        Returns:
            True if accepted, False if outside the sanity range (no state change)
        """
        if not self.in_sanity_range(value):
            logger.debug(f"Rejected temperature {value}")
            return False

        self.last_hardware_value = value
        self.last_hardware_timestamp = self._clock()
        if not self.receiving_hardware:
            logger.info("Hardware temperature reports resumed")
        self.receiving_hardware = True
        self.simulation.rebase(value)
        return True

    def handle_event(self, event: Optional[InboundEvent]) -> bool:
        """Feed a decoded inbound frame; only temperature frames matter."""
        if isinstance(event, TemperatureFrame):
            return self.accept(event.value)
        return False

    def display_tick(self) -> TemperatureReading:
        """Move the displayed value one bounded step toward the current target."""
        now = self._clock()
        if self.receiving_hardware and self.last_hardware_value is not None:
            target = self.last_hardware_value
            self.source = Source.HARDWARE
        else:
            target = self.simulation.step(self._rng, now)
            self.source = Source.SIMULATED

        delta = target - self.displayed_value
        if abs(delta) <= self.config.max_step:
            self.displayed_value = target
        else:
            self.displayed_value += math.copysign(self.config.max_step, delta)
        self._updated_at = now
        return self.reading

    def request_tick(self) -> bool:
        """Re-evaluate staleness.

        Returns:
            True if a temperature request should be sent to the vehicle
        """
        recent = self.is_recent()
        if self.receiving_hardware and not recent:
            logger.info("Hardware temperature is stale, falling back to simulation")
            self.receiving_hardware = False
        return not recent
