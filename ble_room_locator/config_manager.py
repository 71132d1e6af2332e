from __future__ import annotations

import logging
import os
from copy import deepcopy
import yaml

from typing import Callable, Any


logger = logging.getLogger(__name__)


def _env_or_default(env_key: str, default: Any, cast: Callable[[str], Any] = str) -> Any:
    v = os.environ.get(env_key)
    if v is not None:
        try:
            return cast(v)
        except Exception:
            return v
    return default


def _as_bool(v: str) -> bool:
    return v.lower() in ("1", "true", "yes")


def _as_id_list(v: str) -> list[int]:
    return [int(part) for part in v.split(",") if part.strip()]


DEFAULT_CONFIG_PATH = _env_or_default(
    "BLE_LOCATOR_CONFIG",
    os.path.join(".", "config", "config.yaml"),
)


class ConfigManager:
    """配置管理类，负责读写YAML配置文件"""

    def __init__(self, config_file: str | None = None):
        self.config_file = config_file or DEFAULT_CONFIG_PATH
        self.default_config = {
            "mqtt": {
                "ip": _env_or_default("BLE_MQTT_IP", "localhost"),
                "port": _env_or_default("BLE_MQTT_PORT", 1883, int),
                "uplink_topic": _env_or_default("BLE_MQTT_UPLINK_TOPIC", "/room/position/{gatewayId}"),
                "downlink_topic": _env_or_default("BLE_MQTT_DOWNLINK_TOPIC", "/room/advertisement/+"),
            },
            "scanner": {
                # 目标信标 UUID，比较时忽略大小写与连字符
                "identity_uuid": _env_or_default(
                    "BLE_SCANNER_UUID", "12345678-1234-1234-1234-1234567890ab"
                ),
                # 1米处的RSSI值 (dBm)，广播中未携带时使用
                "tx_power": _env_or_default("BLE_SCANNER_TX_POWER", -59, int),
                "permissive": _env_or_default("BLE_SCANNER_PERMISSIVE", False, _as_bool),
                "signature": _env_or_default("BLE_SCANNER_SIGNATURE", "ab90"),
            },
            "rssi_model": {
                "path_loss_exponent": _env_or_default("BLE_RSSI_PATH_LOSS", 2.0, float),
                "min_distance": _env_or_default("BLE_RSSI_MIN_DISTANCE", 0.3, float),
                "max_distance": _env_or_default("BLE_RSSI_MAX_DISTANCE", 15.0, float),
            },
            "kalman": {
                "process_noise": _env_or_default("BLE_KALMAN_Q", 0.0001, float),
                "measurement_noise": _env_or_default("BLE_KALMAN_R", 0.01, float),
                "initial_covariance": 1.0,
                "initial_estimate": 0.0,
            },
            "room": {
                "width": _env_or_default("BLE_ROOM_WIDTH", 5.0, float),
                "height": _env_or_default("BLE_ROOM_HEIGHT", 5.0, float),
                "initial_x": 2.5,
                "initial_y": 2.5,
                "degenerate_threshold": 1e-3,
            },
            "tracking": {
                "reference_ids": _env_or_default("BLE_TRACKING_REFERENCE_IDS", [1001, 1002, 1003], _as_id_list),
                "freshness_window": _env_or_default("BLE_TRACKING_FRESHNESS", 5.0, float),
                "tick_interval": _env_or_default("BLE_TRACKING_TICK", 1.0, float),
                "history_size": 50,
            },
            "paths": {
                "beacon_db": _env_or_default(
                    "BLE_PATH_BEACON_DB", os.path.join(".", "beacon", "beacons.csv")
                ),
                "trail_csv": _env_or_default(
                    "BLE_PATH_TRAIL_CSV", os.path.join(".", "output", "trail.csv")
                ),
            },
        }
        self.load_config()

    def load_config(self) -> None:
        """加载配置文件，如果不存在则创建默认配置"""
        try:
            if os.path.exists(self.config_file):
                with open(self.config_file, "r", encoding="utf-8") as f:
                    self.config = yaml.safe_load(f) or {}
                self._merge_default_config()
            else:
                self.config = deepcopy(self.default_config)
                self.save_config()
        except Exception as e:
            # 发生异常时回退到默认配置
            logger.warning("加载配置文件失败，使用默认配置: %s", e)
            self.config = deepcopy(self.default_config)
            self.save_config()

    def _merge_default_config(self) -> None:
        def merge_dict(default, current):
            for key, value in default.items():
                if key not in current:
                    current[key] = deepcopy(value)
                elif isinstance(value, dict) and isinstance(current[key], dict):
                    merge_dict(value, current[key])

        merge_dict(self.default_config, self.config)

    def save_config(self) -> None:
        try:
            os.makedirs(os.path.dirname(self.config_file) or ".", exist_ok=True)
            with open(self.config_file, "w", encoding="utf-8") as f:
                yaml.dump(
                    self.config,
                    f,
                    default_flow_style=False,
                    allow_unicode=True,
                    indent=2,
                )
        except Exception as e:
            # 保存失败不影响运行
            logger.warning("保存配置文件失败: %s", e)

    # ---------- Accessors ----------
    def get_mqtt_config(self):
        return self.config["mqtt"]

    def get_scanner_config(self):
        return self.config["scanner"]

    def get_rssi_model_config(self):
        return self.config["rssi_model"]

    def get_kalman_config(self):
        return self.config["kalman"]

    def get_room_config(self):
        return self.config["room"]

    def get_tracking_config(self):
        return self.config["tracking"]

    def get_paths(self):
        return self.config.get("paths", {})

    def get_beacon_db_path(self):
        return self.get_paths()["beacon_db"]

    def get_trail_csv_path(self):
        return self.get_paths()["trail_csv"]

    def set_mqtt_config(self, ip, port, uplink_topic=None, downlink_topic=None):
        self.config["mqtt"]["ip"] = ip
        self.config["mqtt"]["port"] = port
        if uplink_topic is not None:
            self.config["mqtt"]["uplink_topic"] = uplink_topic
        if downlink_topic is not None:
            self.config["mqtt"]["downlink_topic"] = downlink_topic
        self.save_config()

    def set_rssi_model_config(self, path_loss_exponent: float, min_distance: float, max_distance: float):
        self.config["rssi_model"]["path_loss_exponent"] = path_loss_exponent
        self.config["rssi_model"]["min_distance"] = min_distance
        self.config["rssi_model"]["max_distance"] = max_distance
        self.save_config()

    def set_kalman_config(self, process_noise: float, measurement_noise: float):
        self.config["kalman"]["process_noise"] = process_noise
        self.config["kalman"]["measurement_noise"] = measurement_noise
        self.save_config()

    def set_room_config(self, width: float, height: float):
        self.config["room"]["width"] = width
        self.config["room"]["height"] = height
        self.save_config()
