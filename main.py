"""
入口转发

包名: ble_room_locator
CLI: ble-room-locator

此文件仅用于兼容 `python main.py` 的运行方式，会转发到 `ble_room_locator.cli:main`。
"""

from ble_room_locator.cli import main as _cli_main


def main():
    return _cli_main()


if __name__ == "__main__":  # pragma: no cover
    main()
