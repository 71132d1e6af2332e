import pytest

from ble_room_locator.estimator import INVALID_DISTANCE, DistanceEstimator
from ble_room_locator.models import FilterState, KnownBeacon, SignalLevel

from conftest import FakeClock


def known(*ids):
    return [KnownBeacon(beacon_id, 0.0, 0.0) for beacon_id in ids]


@pytest.mark.parametrize("raw_signal", [-32768, -150, -100, -59, -30, -1, 1, 40, 32767])
@pytest.mark.parametrize("tx_power", [-128, -59, 0, 20, 127])
def test_distance_stays_in_bounds(raw_signal, tx_power):
    estimator = DistanceEstimator(known(1), min_distance=0.3, max_distance=15.0)
    for _ in range(3):
        d = estimator.estimate_distance(1, raw_signal, tx_power)
        assert 0.3 <= d <= 15.0


def test_zero_signal_is_sentinel_and_skips_filter():
    estimator = DistanceEstimator(known(1))
    estimator.estimate_distance(1, -70, -59)
    before = estimator.filter_state(1)
    reading = estimator.reading(1)

    assert estimator.estimate_distance(1, 0, -59) == INVALID_DISTANCE
    assert estimator.filter_state(1) == before
    assert estimator.reading(1) == reading


def test_unknown_beacon_is_ignored():
    estimator = DistanceEstimator(known(1))

    assert estimator.filter_state(9) is None
    assert estimator.update(9, -60, -59) is None
    assert estimator.estimate_distance(9, -60, -59) == INVALID_DISTANCE

    assert estimator.filter_state(9) is None
    assert 9 not in estimator.filters
    assert len(estimator.filters) == 1
    assert estimator.readings() == []


def test_path_loss_model():
    estimator = DistanceEstimator([], path_loss_exponent=2.0)
    assert estimator.rssi_to_distance(-79, -59) == pytest.approx(10.0)
    assert estimator.rssi_to_distance(-59, -59) == pytest.approx(1.0)
    assert estimator.rssi_to_distance(-40, -59) == 0.3
    assert estimator.rssi_to_distance(-200, -59) == 15.0

    estimator = DistanceEstimator([], path_loss_exponent=4.0)
    assert estimator.rssi_to_distance(-99, -59) == pytest.approx(10.0)


def test_smoothed_distance_converges(beacons):
    estimator = DistanceEstimator(beacons)
    for _ in range(50):
        d = estimator.estimate_distance(1002, -79, -59)
    assert d == pytest.approx(10.0, rel=1e-2)

    reading = estimator.reading(1002)
    assert reading.raw_signal == -79
    assert reading.smoothed_signal == pytest.approx(-79, abs=0.01)
    assert reading.label == "Corner NE"
    assert reading.signal_level is SignalLevel.POOR


def test_filter_parameters_come_from_configuration():
    estimator = DistanceEstimator(
        known(9), process_noise=0.5, measurement_noise=2.0, initial_covariance=3.0
    )
    assert estimator.filter_state(9) == FilterState(0.5, 2.0, 3.0, 0.0)


def test_filter_state_is_a_copy():
    estimator = DistanceEstimator(known(1))
    state = estimator.filter_state(1)
    state.estimate = 123.0
    assert estimator.filter_state(1).estimate == 0.0


def test_fresh_distances():
    clock = FakeClock(10.0)
    estimator = DistanceEstimator(known(1, 2, 3), clock=clock)
    estimator.estimate_distance(1, -60, -59)
    clock.advance(4.0)
    estimator.estimate_distance(2, -60, -59)
    clock.advance(2.0)

    d1, d2, d3 = estimator.fresh_distances([1, 2, 3], window=5.0)
    assert d1 is None  # 6s 前
    assert d2 is not None
    assert d3 is None

    assert estimator.fresh_distances([1], window=10.0)[0] is not None


def test_reset():
    estimator = DistanceEstimator(known(1))
    estimator.estimate_distance(1, -60, -59)
    estimator.reset()
    assert estimator.readings() == []
    assert estimator.filter_state(1).estimate == 0.0


def test_invalid_bounds():
    with pytest.raises(ValueError):
        DistanceEstimator([], min_distance=5.0, max_distance=1.0)
