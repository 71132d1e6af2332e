from __future__ import annotations

from dataclasses import dataclass, asdict
from typing import Optional, Dict, Any, List, Iterator, Tuple
from enum import Enum


@dataclass(frozen=True)
class Position:
    x: float
    y: float


@dataclass(frozen=True)
class KnownBeacon:
    id: int
    x: float
    y: float
    label: str = ""

    @property
    def position(self) -> Position:
        return Position(x=self.x, y=self.y)


@dataclass(frozen=True)
class BeaconAdvertisement:
    """解码后的单个广播帧"""

    identity_uuid: str
    major: int
    minor: int
    raw_signal: int
    tx_power: int


@dataclass
class FilterState:
    """单个信标的标量卡尔曼滤波状态（原地更新）"""

    process_noise: float = 0.0001
    measurement_noise: float = 0.01
    error_covariance: float = 1.0
    estimate: float = 0.0


class SignalLevel(Enum):
    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"

    @classmethod
    def from_rssi(cls, rssi: float) -> "SignalLevel":
        if rssi > -50:
            return cls.EXCELLENT
        if rssi > -60:
            return cls.GOOD
        if rssi > -70:
            return cls.FAIR
        return cls.POOR


@dataclass(frozen=True)
class BeaconReading:
    """
    信标最新读数（每次接受广播后整体替换）
    """

    beacon_id: int
    raw_signal: int
    smoothed_signal: float
    distance_meters: float
    last_update_time: float

    label: str = ""
    major: int = 0
    minor: int = 0
    tx_power: int = 0

    @property
    def signal_level(self) -> SignalLevel:
        return SignalLevel.from_rssi(self.raw_signal)

    def is_fresh(self, now: float, window: float) -> bool:
        return now - self.last_update_time <= window

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["signal_level"] = self.signal_level.value
        return d


class SolveStatus(Enum):
    SUCCESS = "success"
    INSUFFICIENT_DATA = "insufficient_data"
    DEGENERATE_GEOMETRY = "degenerate_geometry"


@dataclass
class SolveResult:
    """
    一次三边定位的结果，失败时 position 为上一次的位置
    """

    position: Position
    status: SolveStatus
    message: str = ""

    # 裁剪前的原始解
    raw_x: Optional[float] = None
    raw_y: Optional[float] = None

    @property
    def ok(self) -> bool:
        return self.status is SolveStatus.SUCCESS

    @property
    def clamped(self) -> bool:
        if self.raw_x is None or self.raw_y is None:
            return False
        return (self.raw_x, self.raw_y) != (self.position.x, self.position.y)

    def to_protocol_string(self) -> str:
        """上行消息格式: x,y,status"""
        return f"{self.position.x:.3f},{self.position.y:.3f},{self.status.value}"


@dataclass(frozen=True)
class AdvertisementBatch:
    """
    网关上报的一批广播
    格式：payload_hex,rssi[,tx_power];payload_hex,rssi[,tx_power];...;gateway_id
    """

    gateway_id: str
    payloads: List[bytes]
    rssis: List[int]
    tx_power_hints: List[Optional[int]]

    def __len__(self) -> int:
        return len(self.payloads)

    def __iter__(self) -> Iterator[Tuple[bytes, int, Optional[int]]]:
        yield from zip(self.payloads, self.rssis, self.tx_power_hints)

    @property
    def is_empty(self):
        return len(self) == 0

    @classmethod
    def parse(cls, data_str: str) -> Optional["AdvertisementBatch"]:
        parts = data_str.strip().split(";")
        if not parts or len(parts) < 2:
            return None
        gateway_id = parts[-1]
        payloads: List[bytes] = []
        rssis: List[int] = []
        hints: List[Optional[int]] = []
        for item in parts[:-1]:
            fields = item.split(",")
            if len(fields) not in (2, 3):
                continue
            try:
                payload = bytes.fromhex(fields[0].strip())
                rssi = int(fields[1])
                hint = int(fields[2]) if len(fields) == 3 and fields[2].strip() else None
            except ValueError:
                continue
            payloads.append(payload)
            rssis.append(rssi)
            hints.append(hint)
        return cls(gateway_id=gateway_id, payloads=payloads, rssis=rssis, tx_power_hints=hints)
