from __future__ import annotations

from typing import Iterable, List, Optional, Tuple

import numpy as np

from .config_manager import ConfigManager
from .decoder import FrameLayout, LAYOUTS_BY_NAME, build_frame
from .models import KnownBeacon, Position


class AdvertisementSimulator:
    """
    无蓝牙硬件时的广播模拟器：
    按对数距离模型计算各信标在给定位置的 RSSI，叠加高斯噪声后编码成广播帧
    """

    def __init__(
        self,
        beacons: Iterable[KnownBeacon],
        identity_uuid: str,
        tx_power: int = -59,
        path_loss_exponent: float = 2.0,
        noise_std: float = 2.0,
        layout: FrameLayout | str = "standard",
        seed: Optional[int] = None,
    ):
        self.beacons = list(beacons)
        self.identity_uuid = identity_uuid
        self.tx_power = int(tx_power)
        self.path_loss_exponent = float(path_loss_exponent)
        self.noise_std = float(noise_std)
        self.layout = LAYOUTS_BY_NAME[layout] if isinstance(layout, str) else layout
        self.rng = np.random.default_rng(seed)
        self._coords = np.array([[b.x, b.y] for b in self.beacons], dtype=float).reshape(-1, 2)

    @classmethod
    def from_config(
        cls, config_manager: ConfigManager, beacons: Iterable[KnownBeacon], **kwargs
    ) -> "AdvertisementSimulator":
        scanner = config_manager.get_scanner_config()
        rssi_model = config_manager.get_rssi_model_config()
        kwargs.setdefault("tx_power", int(scanner.get("tx_power", -59)))
        kwargs.setdefault("path_loss_exponent", float(rssi_model.get("path_loss_exponent", 2.0)))
        return cls(beacons, scanner["identity_uuid"], **kwargs)

    def expected_rssi(self, position: Position) -> np.ndarray:
        """无噪声 RSSI: tx_power - 10 * n * log10(d)"""
        d = np.hypot(self._coords[:, 0] - position.x, self._coords[:, 1] - position.y)
        d = np.maximum(d, 0.1)
        return self.tx_power - 10.0 * self.path_loss_exponent * np.log10(d)

    def generate(self, position: Position) -> List[Tuple[bytes, int]]:
        """每个信标一帧，返回 (payload, rssi)"""
        rssi = self.expected_rssi(position)
        if self.noise_std > 0:
            rssi = rssi + self.rng.normal(0.0, self.noise_std, size=rssi.shape)
        # 0 dBm 是无效读数，限制在 [-127, -1]
        rssi = np.clip(np.rint(rssi), -127, -1).astype(int)

        frames: List[Tuple[bytes, int]] = []
        for beacon, value in zip(self.beacons, rssi):
            payload = build_frame(
                self.layout,
                self.identity_uuid,
                major=beacon.id,
                minor=0,
                tx_power=self.tx_power,
            )
            frames.append((payload, int(value)))
        return frames
