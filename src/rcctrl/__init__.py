"""
RcCtrl - BLE Remote-Control Vehicle Library

A Python library for driving a BLE vehicle controller and tracking its
temperature telemetry.
"""

__version__ = "0.1.0"
__description__ = "CLI and REPL interface for controlling a BLE remote-control vehicle"

from .controller import LinkError, LinkState, LinkStatus, VehicleController
from .display import DisplayManager
from .telemetry import TelemetryReconciler

__all__ = [
    "VehicleController",
    "LinkState",
    "LinkError",
    "LinkStatus",
    "TelemetryReconciler",
    "DisplayManager",
]
