from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading

from .beacon_store import BeaconStore
from .config_manager import ConfigManager
from .decoder import DecodeError, FrameDecoder, LAYOUTS_BY_NAME
from .models import Position
from .mqtt_processor import MQTTAdvertisementProcessor
from .simulator import AdvertisementSimulator
from .tracker import BeaconTracker


logger = logging.getLogger(__name__)


def setup_logging(level: int | str = logging.INFO) -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def apply_mqtt_overrides(config: ConfigManager, host=None, port=None) -> None:
    """命令行参数只覆盖内存中的配置，不写回 config.yaml"""
    mqtt_config = config.get_mqtt_config()
    if host:
        mqtt_config["ip"] = host
    if port:
        mqtt_config["port"] = port


def run_mqtt(args):
    config = ConfigManager(args.config)
    apply_mqtt_overrides(config, getattr(args, "host", None), getattr(args, "port", None))
    processor = MQTTAdvertisementProcessor(config)

    t = threading.Thread(target=processor.start_mqtt_client, daemon=True)
    t.start()

    # graceful shutdown
    def handle_sigint(sig, frame):
        processor.stop_mqtt_client()
        sys.exit(0)

    signal.signal(signal.SIGINT, handle_sigint)
    signal.signal(signal.SIGTERM, handle_sigint)

    t.join()


def run_simulation(args):
    config = ConfigManager(args.config)
    store = BeaconStore(config)
    store.load()
    tracker = BeaconTracker.from_config(config, store)
    simulator = AdvertisementSimulator.from_config(
        config,
        store.all().values(),
        noise_std=args.noise,
        layout=args.layout,
        seed=args.seed,
    )

    truth = Position(x=args.x, y=args.y)
    for step in range(args.steps):
        for payload, rssi in simulator.generate(truth):
            tracker.handle_advertisement(payload, rssi)
        result = tracker.update_position()
        print(
            f"{step:3d}  x={result.position.x:6.3f}  y={result.position.y:6.3f}  {result.status.value}"
        )

    for reading in tracker.readings():
        print(
            f"  beacon {reading.beacon_id} ({reading.label}): rssi={reading.raw_signal} "
            f"smoothed={reading.smoothed_signal:.1f} distance={reading.distance_meters:.2f}m "
            f"[{reading.signal_level.value}]"
        )

    if args.export:
        path = config.get_trail_csv_path() if args.export == "-" else args.export
        tracker.export_history(path)
        logger.info("轨迹已保存: %s", path)
    return 0


def run_decode(args):
    decoder = FrameDecoder(permissive=args.permissive)
    try:
        adv = decoder.decode(bytes.fromhex(args.payload), args.rssi)
    except (DecodeError, ValueError) as e:
        print(f"decode failed: {e}", file=sys.stderr)
        return 1
    print(f"uuid={adv.identity_uuid} major={adv.major} minor={adv.minor} tx_power={adv.tx_power} rssi={adv.raw_signal}")
    return 0


def main(argv=None):
    parser = argparse.ArgumentParser(prog="ble-room-locator", description="BLE Room Locator CLI")
    parser.add_argument("--config", default=None, help="配置文件路径，默认读取 ./config/config.yaml 或环境变量 BLE_LOCATOR_CONFIG")
    parser.add_argument("--log-level", default="INFO", help="日志级别")
    sub = parser.add_subparsers(dest="cmd")

    p_run = sub.add_parser("run", help="运行 MQTT 网关监听")
    p_run.add_argument("--host", default=None, help="MQTT 服务器地址")
    p_run.add_argument("--port", type=int, default=None, help="MQTT 端口")
    p_run.set_defaults(func=run_mqtt)

    p_sim = sub.add_parser("simulate", help="用模拟广播验证定位流程")
    p_sim.add_argument("--x", type=float, default=2.0, help="真实位置 x (m)")
    p_sim.add_argument("--y", type=float, default=1.0, help="真实位置 y (m)")
    p_sim.add_argument("--steps", type=int, default=20, help="模拟周期数")
    p_sim.add_argument("--noise", type=float, default=2.0, help="RSSI 噪声标准差 (dB)")
    p_sim.add_argument("--layout", choices=sorted(LAYOUTS_BY_NAME), default="standard")
    p_sim.add_argument("--seed", type=int, default=None)
    p_sim.add_argument("--export", nargs="?", const="-", default=None, help="保存轨迹 CSV（缺省路径取配置）")
    p_sim.set_defaults(func=run_simulation)

    p_dec = sub.add_parser("decode", help="解码一条十六进制广播负载")
    p_dec.add_argument("payload", help="十六进制字符串")
    p_dec.add_argument("--rssi", type=int, default=-60)
    p_dec.add_argument("--permissive", action="store_true", help="启用签名搜索")
    p_dec.set_defaults(func=run_decode)

    args = parser.parse_args(argv)
    setup_logging(args.log_level.upper())
    # 无子命令/无参数时默认启动服务器
    if not hasattr(args, "func"):
        return run_mqtt(args)
    return args.func(args)


if __name__ == "__main__":
    main()
