from __future__ import annotations

from typing import Dict, Iterable, Optional

from .models import FilterState


class KalmanFilter:
    """
    标量卡尔曼滤波（用于平滑 RSSI）
    状态保存在 FilterState 中，原地更新
    """

    def __init__(self, state: Optional[FilterState] = None):
        self.state = state or FilterState()

    @property
    def estimate(self) -> float:
        return self.state.estimate

    def filter(self, measurement: float) -> float:
        s = self.state
        # 预测
        s.error_covariance += s.process_noise

        # 更新
        gain = s.error_covariance / (s.error_covariance + s.measurement_noise)
        s.estimate += gain * (measurement - s.estimate)
        s.error_covariance *= 1 - gain
        return s.estimate


class KalmanFilterBank:
    """每个信标一个滤波器，按信标 id 索引"""

    def __init__(
        self,
        beacon_ids: Iterable[int] = (),
        process_noise: float = 0.0001,
        measurement_noise: float = 0.01,
        initial_covariance: float = 1.0,
        initial_estimate: float = 0.0,
    ):
        self.process_noise = process_noise
        self.measurement_noise = measurement_noise
        self.initial_covariance = initial_covariance
        self.initial_estimate = initial_estimate
        self._filters: Dict[int, KalmanFilter] = {}
        for beacon_id in beacon_ids:
            self._filters[beacon_id] = KalmanFilter(self.new_state())

    def new_state(self) -> FilterState:
        return FilterState(
            process_noise=self.process_noise,
            measurement_noise=self.measurement_noise,
            error_covariance=self.initial_covariance,
            estimate=self.initial_estimate,
        )

    def __contains__(self, beacon_id: int) -> bool:
        return beacon_id in self._filters

    def __len__(self) -> int:
        return len(self._filters)

    def get(self, beacon_id: int) -> Optional[KalmanFilter]:
        return self._filters.get(beacon_id)

    def filter(self, beacon_id: int, measurement: float) -> float:
        # 只为构造时给定的信标维护滤波器，未知 id 抛 KeyError
        return self._filters[beacon_id].filter(measurement)

    def reset(self) -> None:
        for f in self._filters.values():
            f.state = self.new_state()
