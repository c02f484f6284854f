"""MQTT broadcaster for scan queue events."""
import json
import logging
import time
from typing import Any, Optional, Union

import paho.mqtt.client as mqtt

logger = logging.getLogger(__name__)


class MQTTBroadcaster:
    """MQTT event broadcaster for scan queue changes."""

    def __init__(self, broker: str, port: int, topic: str):
        self.broker = broker
        self.port = port
        self.topic = topic
        self.client: Optional[mqtt.Client] = None
        self.connected = False

    def connect(self) -> bool:
        try:
            self.client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION1)
            self.client.on_connect = self._on_connect
            self.client.connect(self.broker, self.port, keepalive=60)
            self.client.loop_start()
            self.connected = True
            return True
        except Exception as e:
            logger.warning(f"Failed to connect to MQTT broker: {e}")
            return False

    def disconnect(self):
        if self.client:
            self.client.loop_stop()
            self.client.disconnect()
            self.connected = False

    def publish_event(self, event_type: str, report: int, data: dict[str, Any]) -> bool:
        if not self.connected or not self.client:
            return False
        try:
            payload = {
                "report": report,
                "event_type": event_type,
                "timestamp": int(time.time() * 1000),
                **data,
            }
            result = self.client.publish(self.topic, json.dumps(payload), qos=1)
            return result.rc == mqtt.MQTT_ERR_SUCCESS
        except Exception as e:
            logger.error(f"Error publishing event: {e}")
            return False

    def _on_connect(self, client, userdata, flags, rc):
        self.connected = (rc == 0)


class NoOpBroadcaster:
    """No-operation broadcaster for testing or when MQTT disabled."""
    def connect(self) -> bool:
        return True
    def disconnect(self):
        pass
    def publish_event(self, event_type: str, report: int, data: dict[str, Any]) -> bool:
        return True


Broadcaster = Union[MQTTBroadcaster, NoOpBroadcaster]

_broadcaster: Optional[Broadcaster] = None
_broadcaster_config: Optional[dict[str, Any]] = None


def get_broadcaster(broadcast_type: str, broker: str, port: int, topic: str) -> Broadcaster:
    """Get or create global broadcaster instance based on config."""
    global _broadcaster, _broadcaster_config

    desired_config = {
        "broadcast_type": broadcast_type,
        "broker": broker,
        "port": port,
        "topic": topic,
    }

    if _broadcaster is not None and _broadcaster_config == desired_config:
        return _broadcaster

    # Config mismatch, shut down the old broadcaster first
    if _broadcaster is not None:
        _broadcaster.disconnect()

    if broadcast_type == "mqtt":
        _broadcaster = MQTTBroadcaster(broker, port, topic)
    else:
        _broadcaster = NoOpBroadcaster()
    _broadcaster.connect()
    _broadcaster_config = desired_config

    return _broadcaster


def shutdown_broadcaster():
    """Shutdown global broadcaster."""
    global _broadcaster, _broadcaster_config
    if _broadcaster:
        _broadcaster.disconnect()
        _broadcaster = None
        _broadcaster_config = None


def reset_broadcaster_after_fork():
    """Forget the inherited broadcaster in a freshly forked process.

    The paho network thread does not survive fork() and the socket is
    shared with the parent, so it must be dropped without disconnecting.
    """
    global _broadcaster, _broadcaster_config
    _broadcaster = None
    _broadcaster_config = None
