from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Optional, Sequence

from .models import BeaconAdvertisement


# iBeacon 头部常量
COMPANY_ID = 0x004C
FRAME_TYPE = 0x02
FRAME_LENGTH = 0x15

# identity(16) + major(2) + minor(2) + tx_power(1)
PAYLOAD_LENGTH = 21
MIN_BUFFER_LENGTH = 25

DEFAULT_SIGNATURE = bytes.fromhex("ab90")


class DecodeError(ValueError):
    """广播帧无法解码（非致命，调用方丢弃该包）"""


class BufferTooShort(DecodeError):
    pass


class UnrecognizedFormat(DecodeError):
    pass


@dataclass(frozen=True)
class FrameLayout:
    """
    一种字节布局候选：
    header_offset 为 None 表示没有 company id/type/length 头部
    """

    name: str
    identity_offset: int
    header_offset: Optional[int] = None

    @property
    def min_length(self) -> int:
        return self.identity_offset + PAYLOAD_LENGTH

    def matches(self, buffer: bytes, permissive: bool = False) -> bool:
        if len(buffer) < self.min_length:
            return False
        if self.header_offset is None:
            # permissive 模式下，带头部标记但 company id 不对的帧留给签名搜索
            return not (permissive and _has_header_markers(buffer))
        o = self.header_offset
        company = buffer[o : o + 2]
        if (
            int.from_bytes(company, "little") != COMPANY_ID
            and int.from_bytes(company, "big") != COMPANY_ID
        ):
            return False
        return buffer[o + 2] == FRAME_TYPE and buffer[o + 3] == FRAME_LENGTH


STANDARD = FrameLayout(name="standard", identity_offset=4, header_offset=0)
PREFIXED = FrameLayout(name="prefixed", identity_offset=6, header_offset=2)
HEADERLESS = FrameLayout(name="headerless", identity_offset=0)

# 按优先级排列
LAYOUTS: tuple[FrameLayout, ...] = (STANDARD, PREFIXED, HEADERLESS)
LAYOUTS_BY_NAME = {layout.name: layout for layout in LAYOUTS}


def _has_header_markers(buffer: bytes) -> bool:
    for layout in (STANDARD, PREFIXED):
        o = layout.header_offset
        if len(buffer) > o + 3 and buffer[o + 2] == FRAME_TYPE and buffer[o + 3] == FRAME_LENGTH:
            return True
    return False


def format_identity(raw: bytes) -> str:
    """16 字节 -> 小写 8-4-4-4-12"""
    return str(uuid.UUID(bytes=bytes(raw)))


def normalize_identity(value: str) -> str:
    return value.replace("-", "").strip().lower()


def identity_matches(identity: str, expected: str) -> bool:
    """忽略大小写与连字符比较"""
    return normalize_identity(identity) == normalize_identity(expected)


def parse_identity(value: str) -> bytes:
    return uuid.UUID(hex=normalize_identity(value)).bytes


class FrameDecoder:
    """广播负载解码器（纯函数，线程安全）"""

    def __init__(
        self,
        permissive: bool = False,
        signature: bytes = DEFAULT_SIGNATURE,
        layouts: Sequence[FrameLayout] = LAYOUTS,
    ):
        self.permissive = permissive
        self.signature = bytes(signature)
        self.layouts = tuple(layouts)

    def decode(self, buffer: bytes, raw_signal: int) -> BeaconAdvertisement:
        """
        依次尝试各布局，返回第一个结构匹配的结果
        permissive 模式下再按签名前缀逐偏移搜索
        失败抛出 BufferTooShort / UnrecognizedFormat
        """
        buffer = bytes(buffer)
        if len(buffer) < MIN_BUFFER_LENGTH:
            raise BufferTooShort(
                f"buffer too short: {len(buffer)} bytes (need {MIN_BUFFER_LENGTH})"
            )

        layout = self.match_layout(buffer)
        if layout is not None:
            return self._extract(buffer, layout.identity_offset, raw_signal)

        if self.permissive and len(buffer) >= PAYLOAD_LENGTH:
            offset = self.find_signature(buffer)
            if offset is not None:
                return self._extract(buffer, offset, raw_signal)

        raise UnrecognizedFormat(f"no layout matched {len(buffer)}-byte buffer")

    def match_layout(self, buffer: bytes) -> Optional[FrameLayout]:
        for layout in self.layouts:
            if layout.matches(buffer, self.permissive):
                return layout
        return None

    def find_signature(self, buffer: bytes) -> Optional[int]:
        if not self.signature:
            return None
        for offset in range(len(buffer) - PAYLOAD_LENGTH + 1):
            if buffer[offset : offset + len(self.signature)] == self.signature:
                return offset
        return None

    @staticmethod
    def _extract(buffer: bytes, offset: int, raw_signal: int) -> BeaconAdvertisement:
        return BeaconAdvertisement(
            identity_uuid=format_identity(buffer[offset : offset + 16]),
            major=int.from_bytes(buffer[offset + 16 : offset + 18], "big"),
            minor=int.from_bytes(buffer[offset + 18 : offset + 20], "big"),
            raw_signal=int(raw_signal),
            tx_power=int.from_bytes(buffer[offset + 20 : offset + 21], "big", signed=True),
        )


def build_frame(
    layout: FrameLayout | str,
    identity: str,
    major: int,
    minor: int,
    tx_power: int,
    company_id: int = COMPANY_ID,
) -> bytes:
    """按指定布局生成广播负载（模拟器使用）"""
    if isinstance(layout, str):
        layout = LAYOUTS_BY_NAME[layout]

    payload = (
        parse_identity(identity)
        + int(major).to_bytes(2, "big")
        + int(minor).to_bytes(2, "big")
        + int(tx_power).to_bytes(1, "big", signed=True)
    )
    if layout.header_offset is None:
        # 补齐到最小长度
        return payload + bytes(MIN_BUFFER_LENGTH - len(payload))

    header = company_id.to_bytes(2, "little") + bytes([FRAME_TYPE, FRAME_LENGTH])
    # 前缀为 AD 结构的 length/type 字节
    prefix = bytes([len(header) + len(payload) + 1, 0xFF])[: layout.header_offset]
    return prefix + header + payload
