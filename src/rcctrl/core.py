"""
Core constants and configuration for BLE vehicle control.
"""

from dataclasses import dataclass, field

# Peripheral discovery (advertised name substring, first match wins)
TARGET_NAME = "ESP32"
SCAN_TIMEOUT = 5.0
CONNECT_TIMEOUT = 10.0

# Telemetry timing (seconds)
DISPLAY_INTERVAL = 0.5
REQUEST_INTERVAL = 3.0
STALENESS_THRESHOLD = 6.0

# Maximum change of the displayed temperature per display tick (deg C)
MAX_DISPLAY_STEP = 0.5

# Gauge range of the vehicle's temperature sensor (deg C)
TEMP_NOMINAL_MIN = 20.0
TEMP_NOMINAL_MAX = 70.0

# Physically plausible readings; anything outside is rejected
TEMP_SANITY_MIN = -40.0
TEMP_SANITY_MAX = 125.0

DEFAULT_TEMPERATURE = 25.0

SPEED_MIN = 0
SPEED_MAX = 100

# Application metadata
__version__ = "0.1.0"
__description__ = "CLI and REPL interface for controlling a BLE remote-control vehicle"


@dataclass(frozen=True)
class TelemetryConfig:
    """Timing and range settings for the telemetry reconciler."""

    display_interval: float = DISPLAY_INTERVAL
    request_interval: float = REQUEST_INTERVAL
    staleness_threshold: float = STALENESS_THRESHOLD
    max_step: float = MAX_DISPLAY_STEP
    nominal_min: float = TEMP_NOMINAL_MIN
    nominal_max: float = TEMP_NOMINAL_MAX
    sanity_min: float = TEMP_SANITY_MIN
    sanity_max: float = TEMP_SANITY_MAX
    default_temperature: float = DEFAULT_TEMPERATURE


@dataclass(frozen=True)
class LinkConfig:
    """Settings for discovering and connecting to the vehicle."""

    target_name: str = TARGET_NAME
    scan_timeout: float = SCAN_TIMEOUT
    connect_timeout: float = CONNECT_TIMEOUT
    telemetry: TelemetryConfig = field(default_factory=TelemetryConfig)
