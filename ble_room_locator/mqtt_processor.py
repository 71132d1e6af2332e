from __future__ import annotations

import logging
import threading
from typing import Optional

import paho.mqtt.client as mqtt
from paho.mqtt.client import MQTTMessage

from .config_manager import ConfigManager
from .models import AdvertisementBatch, SolveResult
from .tracker import BeaconTracker, PositionTicker


logger = logging.getLogger(__name__)


class MQTTAdvertisementProcessor:
    """网关通过 MQTT 上报原始广播，定时计算位置并回发"""

    def __init__(self, config_manager: ConfigManager, tracker: Optional[BeaconTracker] = None):
        self.lock = threading.Lock()
        self.config_manager = config_manager

        self.tracker = tracker or BeaconTracker.from_config(self.config_manager)
        tracking = self.config_manager.get_tracking_config()
        self.ticker = PositionTicker(self.tracker, float(tracking.get("tick_interval", 1.0)))
        self.tracker.on_position(self.publish_position)

        self.client: Optional[mqtt.Client] = None
        # 最近一次上报的网关，用于上行主题
        self.gateway_id: Optional[str] = None

    # ---------- Core processing ----------
    def process_payload(self, payload: str) -> int:
        """处理一条网关消息，返回被接受的广播数"""
        batch = AdvertisementBatch.parse(payload)
        if batch is None or batch.is_empty:
            logger.warning("消息解析无有效广播数据: %s", payload)
            return 0

        self.gateway_id = batch.gateway_id
        accepted = 0
        for buffer, rssi, tx_power_hint in batch:
            if self.tracker.handle_advertisement(buffer, rssi, tx_power_hint) is not None:
                accepted += 1
        logger.debug("网关 %s: %d/%d 条广播有效", batch.gateway_id, accepted, len(batch))
        return accepted

    def publish_position(self, result: SolveResult) -> None:
        if self.client is None:
            return
        mqtt_config = self.config_manager.get_mqtt_config()
        topic = mqtt_config.get("uplink_topic", "/room/position/{gatewayId}")
        self.client.publish(
            topic.format(gatewayId=self.gateway_id or "all"), result.to_protocol_string()
        )

    # ---------- MQTT ----------
    def start_mqtt_client(self):
        self.client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2)
        self.client.on_connect = self.on_connect
        self.client.on_message = self.on_message
        try:
            mqtt_config = self.config_manager.get_mqtt_config()
            self.client.connect(mqtt_config["ip"], int(mqtt_config["port"]), 60)
            logger.info("连接到MQTT服务器 %s:%s", mqtt_config["ip"], mqtt_config["port"])
            self.ticker.start()
            self.client.loop_forever()
        except Exception as e:
            logger.error("MQTT连接错误: %s", e)
        finally:
            self.ticker.stop()

    def stop_mqtt_client(self):
        self.ticker.stop()
        if self.client is not None:
            try:
                self.client.disconnect()
                self.client.loop_stop()
                logger.info("MQTT连接已断开")
            except Exception as e:
                logger.error("断开MQTT连接时出错: %s", e)

    # ---------- MQTT handlers ----------
    def on_connect(self, client, userdata, flags, reason_code, properties=None):
        if reason_code.is_failure:
            logger.error("连接失败，返回码: %s", reason_code)
            return
        logger.info("成功连接到MQTT服务器")
        mqtt_config = self.config_manager.get_mqtt_config()
        topic = mqtt_config.get("downlink_topic", "/room/advertisement/+")
        client.subscribe(topic)
        logger.info("已订阅主题: %s", topic)

    def on_message(self, client, userdata, msg: MQTTMessage):
        try:
            payload = msg.payload.decode("utf-8")
            with self.lock:
                self.process_payload(payload)
        except Exception as e:
            logger.exception("处理消息时出错: %s", e)
