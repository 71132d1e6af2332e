from __future__ import annotations

import logging
import math
import threading
import time
from dataclasses import replace
from typing import Callable, Dict, Iterable, List, Optional

from .config_manager import ConfigManager
from .filters import KalmanFilterBank
from .models import BeaconReading, FilterState, KnownBeacon


logger = logging.getLogger(__name__)

# rssi == 0 时返回的哨兵距离
INVALID_DISTANCE = -1.0


class DistanceEstimator:
    """基于RSSI的距离估计：逐信标卡尔曼平滑 + 对数距离路径损耗模型"""

    def __init__(
        self,
        beacons: Iterable[KnownBeacon] = (),
        path_loss_exponent: float = 2.0,
        min_distance: float = 0.3,
        max_distance: float = 15.0,
        process_noise: float = 0.0001,
        measurement_noise: float = 0.01,
        initial_covariance: float = 1.0,
        initial_estimate: float = 0.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if min_distance > max_distance:
            raise ValueError("min_distance 不能大于 max_distance")

        # 滤波状态与最新读数共用一把锁
        self.lock = threading.RLock()
        self.clock = clock

        self.beacons: Dict[int, KnownBeacon] = {b.id: b for b in beacons}

        # 路径损耗指数，室内取 2.0
        self.path_loss_exponent = float(path_loss_exponent)
        self.min_distance = float(min_distance)
        self.max_distance = float(max_distance)

        self.filters = KalmanFilterBank(
            self.beacons,
            process_noise=process_noise,
            measurement_noise=measurement_noise,
            initial_covariance=initial_covariance,
            initial_estimate=initial_estimate,
        )
        self._readings: Dict[int, BeaconReading] = {}

    @classmethod
    def from_config(
        cls,
        config_manager: ConfigManager,
        beacons: Iterable[KnownBeacon],
        clock: Callable[[], float] = time.monotonic,
    ) -> "DistanceEstimator":
        rssi_config = config_manager.get_rssi_model_config()
        kalman_config = config_manager.get_kalman_config()
        return cls(
            beacons,
            path_loss_exponent=float(rssi_config.get("path_loss_exponent", 2.0)),
            min_distance=float(rssi_config.get("min_distance", 0.3)),
            max_distance=float(rssi_config.get("max_distance", 15.0)),
            process_noise=float(kalman_config.get("process_noise", 0.0001)),
            measurement_noise=float(kalman_config.get("measurement_noise", 0.01)),
            initial_covariance=float(kalman_config.get("initial_covariance", 1.0)),
            initial_estimate=float(kalman_config.get("initial_estimate", 0.0)),
            clock=clock,
        )

    def clamp(self, distance: float) -> float:
        return max(self.min_distance, min(self.max_distance, distance))

    def rssi_to_distance(self, signal: float, tx_power: float) -> float:
        """
        路径损耗模型: d = 10 ^ ((tx_power - rssi) / (10 * n))
        结果限制在 [min_distance, max_distance]
        """
        exponent = (tx_power - signal) / (10.0 * self.path_loss_exponent)
        try:
            distance = math.pow(10, exponent)
        except OverflowError:
            distance = math.inf
        return self.clamp(distance)

    def estimate_distance(self, beacon_id: int, raw_signal: int, tx_power: int) -> float:
        """平滑后的距离（米），无效读数返回 INVALID_DISTANCE"""
        reading = self.update(beacon_id, raw_signal, tx_power)
        if reading is None:
            return INVALID_DISTANCE
        return reading.distance_meters

    def update(
        self,
        beacon_id: int,
        raw_signal: int,
        tx_power: int,
        major: int = 0,
        minor: int = 0,
    ) -> Optional[BeaconReading]:
        # 0 dBm 视为无效读数，不进入滤波器
        if raw_signal == 0:
            logger.debug("信标 %s 读数无效 (rssi=0)，跳过", beacon_id)
            return None

        with self.lock:
            if beacon_id not in self.filters:
                logger.debug("信标 %s 未配置，忽略读数", beacon_id)
                return None
            smoothed = self.filters.filter(beacon_id, raw_signal)
            distance = self.rssi_to_distance(smoothed, tx_power)
            reading = BeaconReading(
                beacon_id=beacon_id,
                raw_signal=int(raw_signal),
                smoothed_signal=smoothed,
                distance_meters=distance,
                last_update_time=self.clock(),
                label=self.beacons[beacon_id].label,
                major=major,
                minor=minor,
                tx_power=int(tx_power),
            )
            self._readings[beacon_id] = reading

        logger.debug(
            "信标 %s: rssi=%s, 平滑=%.2f, 距离=%.2fm", beacon_id, raw_signal, smoothed, distance
        )
        return reading

    # ---- Accessors ----
    def reading(self, beacon_id: int) -> Optional[BeaconReading]:
        with self.lock:
            return self._readings.get(beacon_id)

    def readings(self) -> List[BeaconReading]:
        with self.lock:
            return [self._readings[k] for k in sorted(self._readings)]

    def fresh_distances(
        self, beacon_ids: Iterable[int], window: float, now: Optional[float] = None
    ) -> List[Optional[float]]:
        """按顺序返回各信标的距离，缺失或过期为 None"""
        with self.lock:
            now = self.clock() if now is None else now
            distances: List[Optional[float]] = []
            for beacon_id in beacon_ids:
                reading = self._readings.get(beacon_id)
                if reading is None or not reading.is_fresh(now, window):
                    distances.append(None)
                else:
                    distances.append(reading.distance_meters)
            return distances

    def filter_state(self, beacon_id: int) -> Optional[FilterState]:
        """滤波状态副本，未配置的信标返回 None"""
        with self.lock:
            kf = self.filters.get(beacon_id)
            return replace(kf.state) if kf is not None else None

    def reset(self) -> None:
        with self.lock:
            self.filters.reset()
            self._readings.clear()
