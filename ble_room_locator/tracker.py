from __future__ import annotations

import logging
import os
import threading
import time
from collections import deque
from typing import Callable, Deque, Dict, Iterable, List, Optional, Sequence, Tuple

import pandas as pd

from .beacon_store import BeaconStore
from .config_manager import ConfigManager
from .decoder import DecodeError, FrameDecoder, identity_matches
from .estimator import DistanceEstimator
from .models import (
    BeaconAdvertisement,
    BeaconReading,
    KnownBeacon,
    Position,
    SolveResult,
    SolveStatus,
)
from .solver import PositionSolver


logger = logging.getLogger(__name__)

PositionListener = Callable[[SolveResult], None]


class BeaconTracker:
    """
    定位流水线：
    - 广播回调：解码 -> UUID 过滤 -> major 映射信标 -> 距离估计
    - 定时：取三个参考信标的新鲜距离 -> 三边定位 -> 通知监听者
    """

    def __init__(
        self,
        beacons: Iterable[KnownBeacon],
        reference_ids: Sequence[int],
        decoder: Optional[FrameDecoder] = None,
        estimator: Optional[DistanceEstimator] = None,
        solver: Optional[PositionSolver] = None,
        identity_uuid: Optional[str] = None,
        default_tx_power: int = -59,
        freshness_window: float = 5.0,
        history_size: int = 50,
        initial_position: Optional[Position] = None,
    ):
        self.beacons: Dict[int, KnownBeacon] = {b.id: b for b in beacons}
        if len(reference_ids) != 3:
            raise ValueError(f"需要3个参考信标，实际 {len(reference_ids)} 个")
        missing = [bid for bid in reference_ids if bid not in self.beacons]
        if missing:
            raise ValueError(f"参考信标未配置: {missing}")
        self.reference_ids = list(reference_ids)
        self.reference_beacons = [self.beacons[bid] for bid in self.reference_ids]

        self.decoder = decoder or FrameDecoder()
        self.estimator = estimator or DistanceEstimator(self.beacons.values())
        self.solver = solver or PositionSolver(5.0, 5.0)

        self.identity_uuid = identity_uuid
        self.default_tx_power = int(default_tx_power)
        self.freshness_window = float(freshness_window)

        self.lock = threading.Lock()
        self.initial_position = initial_position or Position(
            x=self.solver.room_width / 2, y=self.solver.room_height / 2
        )
        self._position = self.initial_position
        # (wall clock, position)
        self._history: Deque[Tuple[float, Position]] = deque(maxlen=history_size)
        self._last_result: Optional[SolveResult] = None
        self._listeners: List[PositionListener] = []

    @classmethod
    def from_config(
        cls,
        config_manager: ConfigManager,
        beacon_store: Optional[BeaconStore] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> "BeaconTracker":
        if beacon_store is None:
            beacon_store = BeaconStore(config_manager)
            beacon_store.load()
        beacons = list(beacon_store.all().values())

        scanner = config_manager.get_scanner_config()
        room = config_manager.get_room_config()
        tracking = config_manager.get_tracking_config()

        decoder = FrameDecoder(
            permissive=bool(scanner.get("permissive", False)),
            signature=bytes.fromhex(str(scanner.get("signature", "ab90"))),
        )
        return cls(
            beacons,
            reference_ids=[int(bid) for bid in tracking["reference_ids"]],
            decoder=decoder,
            estimator=DistanceEstimator.from_config(config_manager, beacons, clock=clock),
            solver=PositionSolver.from_config(config_manager),
            identity_uuid=scanner.get("identity_uuid") or None,
            default_tx_power=int(scanner.get("tx_power", -59)),
            freshness_window=float(tracking.get("freshness_window", 5.0)),
            history_size=int(tracking.get("history_size", 50)),
            initial_position=Position(
                x=float(room.get("initial_x", 2.5)), y=float(room.get("initial_y", 2.5))
            ),
        )

    # ---------- Advertisements ----------
    def handle_advertisement(
        self, buffer: bytes, raw_signal: int, tx_power_hint: Optional[int] = None
    ) -> Optional[BeaconReading]:
        """处理一次广播，返回更新后的读数；被丢弃时返回 None"""
        try:
            advertisement = self.decoder.decode(buffer, raw_signal)
        except DecodeError as e:
            logger.debug("丢弃广播: %s", e)
            return None

        if self.identity_uuid and not identity_matches(
            advertisement.identity_uuid, self.identity_uuid
        ):
            return None

        beacon = self.beacons.get(advertisement.major)
        if beacon is None:
            logger.debug("未知信标 major=%s", advertisement.major)
            return None

        return self.estimator.update(
            beacon.id,
            advertisement.raw_signal,
            self.resolve_tx_power(advertisement, tx_power_hint),
            major=advertisement.major,
            minor=advertisement.minor,
        )

    def resolve_tx_power(
        self, advertisement: BeaconAdvertisement, tx_power_hint: Optional[int] = None
    ) -> int:
        """平台提供的 tx power 优先，其次是广播内的值，最后是默认值"""
        if tx_power_hint is not None:
            return int(tx_power_hint)
        if advertisement.tx_power:
            return advertisement.tx_power
        return self.default_tx_power

    # ---------- Position ----------
    def update_position(self, now: Optional[float] = None) -> SolveResult:
        distances = self.estimator.fresh_distances(
            self.reference_ids, self.freshness_window, now=now
        )
        with self.lock:
            result = self.solver.trilaterate(self.reference_beacons, distances, self._position)
            self._last_result = result
            if result.ok:
                self._position = result.position
                self._history.append((time.time(), result.position))
            listeners = list(self._listeners)

        if not result.ok:
            logger.debug("位置未更新: %s", result.message)
            return result

        logger.info(
            "位置计算成功: (%.3f, %.3f), 原始解: (%.3f, %.3f)",
            result.position.x,
            result.position.y,
            result.raw_x,
            result.raw_y,
        )
        for listener in listeners:
            try:
                listener(result)
            except Exception as e:
                logger.exception("位置回调出错: %s", e)
        return result

    def on_position(self, fn: PositionListener) -> None:
        with self.lock:
            self._listeners.append(fn)

    @property
    def position(self) -> Position:
        with self.lock:
            return self._position

    @property
    def status(self) -> Optional[SolveStatus]:
        with self.lock:
            return self._last_result.status if self._last_result else None

    @property
    def last_result(self) -> Optional[SolveResult]:
        with self.lock:
            return self._last_result

    @property
    def history(self) -> List[Position]:
        with self.lock:
            return [p for _, p in self._history]

    def readings(self) -> List[BeaconReading]:
        return self.estimator.readings()

    def history_frame(self) -> pd.DataFrame:
        with self.lock:
            rows = [{"timestamp": t, "x": p.x, "y": p.y} for t, p in self._history]
        df = pd.DataFrame(rows, columns=["timestamp", "x", "y"])
        df["timestamp"] = pd.to_datetime(df["timestamp"], unit="s")
        return df

    def export_history(self, csv_path: str) -> None:
        os.makedirs(os.path.dirname(csv_path) or ".", exist_ok=True)
        self.history_frame().to_csv(csv_path, index=False, encoding="utf-8")

    def reset(self) -> None:
        """重新开始：清空滤波状态、读数与轨迹"""
        self.estimator.reset()
        with self.lock:
            self._position = self.initial_position
            self._history.clear()
            self._last_result = None


class PositionTicker:
    """按固定周期在后台线程调用 update_position"""

    def __init__(self, tracker: BeaconTracker, interval: float = 1.0):
        if interval <= 0:
            raise ValueError("interval 必须为正数")
        self.tracker = tracker
        self.interval = float(interval)
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="position-ticker", daemon=True)
        self._thread.start()
        logger.info("定位定时器已启动，周期 %.2fs", self.interval)

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
            logger.info("定位定时器已停止")

    def _run(self) -> None:
        while not self._stop.wait(self.interval):
            try:
                self.tracker.update_position()
            except Exception as e:
                logger.exception("定位计算出错: %s", e)
