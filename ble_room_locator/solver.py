from __future__ import annotations

import logging
import math
from typing import Optional, Sequence

import numpy as np

from .config_manager import ConfigManager
from .models import KnownBeacon, Position, SolveResult, SolveStatus


logger = logging.getLogger(__name__)


class PositionSolver:
    """三个参考信标的线性三边定位（二维），结果裁剪到房间范围内"""

    def __init__(
        self,
        room_width: float,
        room_height: float,
        degenerate_threshold: float = 1e-3,
    ):
        if room_width <= 0 or room_height <= 0:
            raise ValueError("房间尺寸必须为正数")
        self.room_width = float(room_width)
        self.room_height = float(room_height)
        self.degenerate_threshold = float(degenerate_threshold)

    @classmethod
    def from_config(cls, config_manager: ConfigManager) -> "PositionSolver":
        room = config_manager.get_room_config()
        return cls(
            room_width=float(room.get("width", 5.0)),
            room_height=float(room.get("height", 5.0)),
            degenerate_threshold=float(room.get("degenerate_threshold", 1e-3)),
        )

    def clamp(self, x: float, y: float) -> Position:
        return Position(
            x=float(np.clip(x, 0.0, self.room_width)),
            y=float(np.clip(y, 0.0, self.room_height)),
        )

    def solve(
        self,
        reference_beacons: Sequence[KnownBeacon],
        distances: Sequence[Optional[float]],
        previous_position: Position,
    ) -> Position:
        return self.trilaterate(reference_beacons, distances, previous_position).position

    def trilaterate(
        self,
        reference_beacons: Sequence[KnownBeacon],
        distances: Sequence[Optional[float]],
        previous_position: Position,
    ) -> SolveResult:
        """
        两两相减圆方程得到线性方程组:
            A*x + B*y = C
            D*x + E*y = F
        参考点近似共线（|A*E - B*D| 过小）时保持上一次位置
        """
        if len(reference_beacons) != 3 or len(distances) != 3:
            return SolveResult(
                position=previous_position,
                status=SolveStatus.INSUFFICIENT_DATA,
                message=f"需要3个参考信标，实际 {len(reference_beacons)} 个信标/{len(distances)} 个距离",
            )
        for beacon, d in zip(reference_beacons, distances):
            if d is None or not math.isfinite(d) or d <= 0:
                return SolveResult(
                    position=previous_position,
                    status=SolveStatus.INSUFFICIENT_DATA,
                    message=f"信标 {beacon.id} 距离无效: {d}",
                )

        (x1, y1), (x2, y2), (x3, y3) = [(b.x, b.y) for b in reference_beacons]
        r1, r2, r3 = distances

        A = 2 * (x2 - x1)
        B = 2 * (y2 - y1)
        C = r1**2 - r2**2 - x1**2 + x2**2 - y1**2 + y2**2
        D = 2 * (x3 - x2)
        E = 2 * (y3 - y2)
        F = r2**2 - r3**2 - x2**2 + x3**2 - y2**2 + y3**2

        denominator = A * E - B * D
        if abs(denominator) < self.degenerate_threshold:
            logger.warning(
                "参考信标近似共线 (denominator=%.6f)，保持上一次位置", denominator
            )
            return SolveResult(
                position=previous_position,
                status=SolveStatus.DEGENERATE_GEOMETRY,
                message=f"参考信标近似共线: denominator={denominator:.6f}",
            )

        a = np.array([[A, B], [D, E]], dtype=float)
        b = np.array([C, F], dtype=float)
        try:
            x, y = np.linalg.solve(a, b)
        except np.linalg.LinAlgError:
            return SolveResult(
                position=previous_position,
                status=SolveStatus.DEGENERATE_GEOMETRY,
                message="线性方程组奇异",
            )

        position = self.clamp(x, y)
        return SolveResult(
            position=position,
            status=SolveStatus.SUCCESS,
            raw_x=float(x),
            raw_y=float(y),
        )
