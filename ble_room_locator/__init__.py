"""BLE Room Locator package.

This package provides:
- FrameDecoder: iBeacon-style advertisement decoding (multiple byte layouts)
- DistanceEstimator: per-beacon Kalman-smoothed RSSI -> distance
- PositionSolver: three-beacon linear trilateration clamped to the room
- BeaconTracker / PositionTicker: the advertisement + 1 Hz solve pipeline
- ConfigManager / BeaconStore: YAML configuration and CSV beacon table
- MQTTAdvertisementProcessor: MQTT gateway bridge
"""

from .config_manager import ConfigManager
from .beacon_store import BeaconStore
from .decoder import BufferTooShort, DecodeError, FrameDecoder, UnrecognizedFormat
from .estimator import DistanceEstimator
from .solver import PositionSolver
from .tracker import BeaconTracker, PositionTicker
from .mqtt_processor import MQTTAdvertisementProcessor

__all__ = [
    "ConfigManager",
    "BeaconStore",
    "FrameDecoder",
    "DecodeError",
    "BufferTooShort",
    "UnrecognizedFormat",
    "DistanceEstimator",
    "PositionSolver",
    "BeaconTracker",
    "PositionTicker",
    "MQTTAdvertisementProcessor",
]
