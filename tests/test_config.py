import yaml

from ble_room_locator.beacon_store import SAMPLE_BEACONS, BeaconStore
from ble_room_locator.config_manager import ConfigManager
from ble_room_locator.estimator import DistanceEstimator
from ble_room_locator.models import KnownBeacon
from ble_room_locator.solver import PositionSolver
from ble_room_locator.tracker import BeaconTracker


def make_config(tmp_path, data=None):
    path = tmp_path / "config" / "config.yaml"
    if data is not None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(yaml.safe_dump(data), encoding="utf-8")
    config = ConfigManager(str(path))
    config.config["paths"]["beacon_db"] = str(tmp_path / "beacon" / "beacons.csv")
    config.config["paths"]["trail_csv"] = str(tmp_path / "output" / "trail.csv")
    return config


def test_default_config_written(tmp_path):
    config = make_config(tmp_path)
    assert (tmp_path / "config" / "config.yaml").exists()
    assert config.get_kalman_config()["process_noise"] == 0.0001
    assert config.get_kalman_config()["measurement_noise"] == 0.01
    assert config.get_rssi_model_config()["path_loss_exponent"] == 2.0
    assert config.get_tracking_config()["reference_ids"] == [1001, 1002, 1003]
    assert config.get_scanner_config()["permissive"] is False


def test_partial_file_merged_with_defaults(tmp_path):
    config = make_config(tmp_path, {"room": {"width": 8.0}, "kalman": {"process_noise": 0.01}})
    assert config.get_room_config()["width"] == 8.0
    assert config.get_room_config()["height"] == 5.0
    assert config.get_kalman_config()["process_noise"] == 0.01
    assert config.get_kalman_config()["measurement_noise"] == 0.01
    assert config.get_mqtt_config()["port"] == 1883


def test_setters_persist(tmp_path):
    config = make_config(tmp_path)
    config.set_room_config(6.0, 4.0)
    config.set_kalman_config(0.001, 0.05)
    config.set_rssi_model_config(2.5, 0.5, 20.0)
    config.set_mqtt_config("broker.local", 1884)

    reloaded = ConfigManager(config.config_file)
    assert reloaded.get_room_config()["width"] == 6.0
    assert reloaded.get_kalman_config()["measurement_noise"] == 0.05
    assert reloaded.get_rssi_model_config()["max_distance"] == 20.0
    assert reloaded.get_mqtt_config()["ip"] == "broker.local"

    # 默认配置不受影响
    assert ConfigManager(str(tmp_path / "other.yaml")).get_room_config()["width"] == 5.0


def test_components_from_config(tmp_path):
    config = make_config(tmp_path)
    config.set_rssi_model_config(3.0, 0.5, 12.0)
    config.set_room_config(8.0, 6.0)

    estimator = DistanceEstimator.from_config(config, [])
    assert estimator.path_loss_exponent == 3.0
    assert (estimator.min_distance, estimator.max_distance) == (0.5, 12.0)

    solver = PositionSolver.from_config(config)
    assert (solver.room_width, solver.room_height) == (8.0, 6.0)


def test_missing_beacon_table_creates_sample(tmp_path):
    config = make_config(tmp_path)
    store = BeaconStore(config)
    store.load()

    assert len(store) == len(SAMPLE_BEACONS)
    assert store.get(1002) == KnownBeacon(id=1002, x=5.0, y=0.0, label="Corner NE")
    assert (tmp_path / "beacon" / "beacons.csv").exists()

    reloaded = BeaconStore(config)
    reloaded.load()
    assert reloaded.all() == store.all()


def test_beacon_table_normalized(tmp_path):
    config = make_config(tmp_path)
    csv_path = tmp_path / "beacons.csv"
    csv_path.write_text("id,x,y\n7,1.5,2\n8,abc,3\n7,4,4\n", encoding="utf-8")

    store = BeaconStore(config)
    store.load(str(csv_path))

    assert sorted(store.all()) == [7, 8]
    assert store.get(7) == KnownBeacon(id=7, x=4.0, y=4.0, label="")
    assert store.get(8).x == 0.0
    assert store.get(9) is None
    assert not store.has(9)


def test_tracker_from_config(tmp_path):
    config = make_config(tmp_path)
    config.config["scanner"]["permissive"] = True
    tracker = BeaconTracker.from_config(config)

    assert tracker.reference_ids == [1001, 1002, 1003]
    assert tracker.decoder.permissive
    assert tracker.decoder.signature == b"\xab\x90"
    assert tracker.identity_uuid == "12345678-1234-1234-1234-1234567890ab"
    assert tracker.position.x == 2.5
