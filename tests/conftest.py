import math

import pytest

from ble_room_locator.decoder import build_frame
from ble_room_locator.estimator import DistanceEstimator
from ble_room_locator.models import KnownBeacon, Position
from ble_room_locator.solver import PositionSolver
from ble_room_locator.tracker import BeaconTracker


IDENTITY = "12345678-1234-1234-1234-1234567890ab"
TX_POWER = -59


class FakeClock:
    def __init__(self, now: float = 100.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def rssi_at(beacon: KnownBeacon, position: Position, tx_power: int = TX_POWER) -> int:
    d = math.hypot(beacon.x - position.x, beacon.y - position.y)
    return round(tx_power - 20 * math.log10(d))


@pytest.fixture
def beacons():
    return [
        KnownBeacon(id=1001, x=0.0, y=0.0, label="Corner NW"),
        KnownBeacon(id=1002, x=5.0, y=0.0, label="Corner NE"),
        KnownBeacon(id=1003, x=0.0, y=5.0, label="Corner SW"),
        KnownBeacon(id=1004, x=5.0, y=5.0, label="Corner SE"),
    ]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def tracker(beacons, clock):
    return BeaconTracker(
        beacons,
        reference_ids=[1001, 1002, 1003],
        estimator=DistanceEstimator(beacons, clock=clock),
        solver=PositionSolver(5.0, 5.0),
        identity_uuid=IDENTITY,
        default_tx_power=TX_POWER,
        freshness_window=5.0,
        history_size=50,
    )


@pytest.fixture
def frame():
    def _frame(major, tx_power=TX_POWER, layout="standard", identity=IDENTITY, minor=0):
        return build_frame(layout, identity, major=major, minor=minor, tx_power=tx_power)

    return _frame
