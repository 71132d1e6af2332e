from __future__ import annotations

import logging
import os
from typing import Dict, List, Optional, cast

import pandas as pd

from .models import KnownBeacon
from .config_manager import ConfigManager


logger = logging.getLogger(__name__)

COLUMNS = ["x", "y", "label"]

# 5m x 5m 房间的默认布置
SAMPLE_BEACONS = [
    {"id": 1001, "x": 0.0, "y": 0.0, "label": "Corner NW"},
    {"id": 1002, "x": 5.0, "y": 0.0, "label": "Corner NE"},
    {"id": 1003, "x": 0.0, "y": 5.0, "label": "Corner SW"},
    {"id": 1004, "x": 5.0, "y": 5.0, "label": "Corner SE"},
    {"id": 1005, "x": 2.5, "y": 2.5, "label": "Center"},
]


class BeaconStore:
    """已知信标表（pandas + CSV），加载后只读"""

    def __init__(self, config_manager: Optional[ConfigManager] = None):
        # 索引为信标 id
        self._df = pd.DataFrame(columns=COLUMNS)
        self._df.index.name = "id"
        self._config = config_manager or ConfigManager()

    # ---- Utils ----
    def _normalize_df(self, df: pd.DataFrame) -> pd.DataFrame:
        if "id" not in df.columns:
            raise KeyError("CSV 文件缺少 'id' 列")
        df = df.copy()
        df["id"] = pd.to_numeric(df["id"], errors="coerce")
        df = df.dropna(subset=["id"])
        for col in ["x", "y"]:
            if col not in df.columns:
                df[col] = 0.0
            df[col] = pd.to_numeric(df[col], errors="coerce").fillna(0.0)
        if "label" not in df.columns:
            df["label"] = ""
        df["label"] = df["label"].fillna("").astype(str)

        df = df[["id", *COLUMNS]]
        df = df.drop_duplicates(subset=["id"], keep="last")
        df = df.astype({"id": "int64", "x": "float64", "y": "float64"})
        df = df.set_index("id")
        df.index.name = "id"
        return df.sort_index()

    # ---- Load/Save ----
    def load(self, beacon_file_path: Optional[str] = None):
        csv_path = beacon_file_path or self._config.get_beacon_db_path()
        try:
            if not os.path.exists(csv_path):
                logger.warning("信标表不存在，生成示例: %s", csv_path)
                self._create_sample(csv_path)
                return
            df = pd.read_csv(csv_path)
            self._df = self._normalize_df(df)
            logger.info("已加载 %d 个信标: %s", len(self._df), csv_path)
        except Exception as e:
            # 出错时也生成示例，保证系统可运行
            logger.warning("加载信标表失败，生成示例: %s", e)
            self._create_sample(csv_path)

    def _create_sample(self, beacon_file_path: Optional[str] = None):
        csv_path = beacon_file_path or self._config.get_beacon_db_path()
        self._df = self._normalize_df(pd.DataFrame(SAMPLE_BEACONS))
        self.save(csv_path)

    def save(self, beacon_file_path: Optional[str] = None):
        csv_path = beacon_file_path or self._config.get_beacon_db_path()
        os.makedirs(os.path.dirname(csv_path) or ".", exist_ok=True)
        self._df.to_csv(csv_path, index=True, index_label="id", encoding="utf-8")

    # ---- Accessors ----
    def __len__(self) -> int:
        return len(self._df)

    def has(self, beacon_id: int) -> bool:
        return beacon_id in self._df.index

    def get(self, beacon_id: int) -> Optional[KnownBeacon]:
        if beacon_id not in self._df.index:
            return None
        row = cast(pd.Series, self._df.loc[beacon_id])
        return KnownBeacon(
            id=int(beacon_id),
            x=float(row.at["x"]),
            y=float(row.at["y"]),
            label=str(row.at["label"]),
        )

    def all(self) -> Dict[int, KnownBeacon]:
        result: Dict[int, KnownBeacon] = {}
        for beacon_id, row in self._df.iterrows():
            row_s = cast(pd.Series, row)
            bid = int(cast(int, beacon_id))
            result[bid] = KnownBeacon(
                id=bid,
                x=float(row_s.at["x"]),
                y=float(row_s.at["y"]),
                label=str(row_s.at["label"]),
            )
        return result

    def get_many(self, beacon_ids: List[int]) -> List[Optional[KnownBeacon]]:
        return [self.get(beacon_id) for beacon_id in beacon_ids]
