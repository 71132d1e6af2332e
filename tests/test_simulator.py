import numpy as np
import pytest

from ble_room_locator.decoder import FrameDecoder
from ble_room_locator.models import Position
from ble_room_locator.simulator import AdvertisementSimulator

from conftest import IDENTITY, rssi_at


def test_noise_free_rssi(beacons):
    simulator = AdvertisementSimulator(beacons, IDENTITY, noise_std=0.0)
    frames = simulator.generate(Position(2.0, 1.0))
    assert [rssi for _, rssi in frames] == [rssi_at(b, Position(2.0, 1.0)) for b in beacons]


@pytest.mark.parametrize("layout", ["standard", "prefixed", "headerless"])
def test_frames_decode(beacons, layout):
    simulator = AdvertisementSimulator(beacons, IDENTITY, layout=layout, seed=1)
    decoder = FrameDecoder()
    for beacon, (payload, rssi) in zip(beacons, simulator.generate(Position(1.0, 1.0))):
        adv = decoder.decode(payload, rssi)
        assert adv.identity_uuid == IDENTITY
        assert adv.major == beacon.id
        assert adv.tx_power == -59
        assert -127 <= rssi <= -1


def test_seeded_noise_is_reproducible(beacons):
    a = AdvertisementSimulator(beacons, IDENTITY, noise_std=3.0, seed=42)
    b = AdvertisementSimulator(beacons, IDENTITY, noise_std=3.0, seed=42)
    truth = Position(3.0, 3.0)
    assert a.generate(truth) == b.generate(truth)


def test_expected_rssi_near_field(beacons):
    simulator = AdvertisementSimulator(beacons, IDENTITY)
    rssi = simulator.expected_rssi(Position(0.0, 0.0))
    # 距离下限 0.1m
    assert rssi[0] == pytest.approx(-59 + 20.0)
    assert np.all(rssi[1:] < -59)


def test_simulated_pipeline(tracker, beacons):
    simulator = AdvertisementSimulator(beacons, IDENTITY, noise_std=0.0)
    for _ in range(30):
        for payload, rssi in simulator.generate(Position(2.0, 1.0)):
            tracker.handle_advertisement(payload, rssi)
    result = tracker.update_position()
    assert result.ok
    assert result.position.x == pytest.approx(2.0, abs=0.05)
    assert result.position.y == pytest.approx(1.0, abs=0.05)
