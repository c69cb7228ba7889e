"""MQTT publishing helper."""

from __future__ import annotations

import json
import threading
import time
from dataclasses import dataclass
from typing import Optional

from loguru import logger
from paho.mqtt import client as mqtt

from monitor.events import AudioData, Event


@dataclass
class MQTTConfig:
    host: str
    port: int
    topic_prefix: str
    username: str | None = None
    password: str | None = None


def event_topic(prefix: str, event: Event) -> str:
    return f"{prefix.rstrip('/')}/{event.name}"


class MQTTPublisher:
    """Publish monitor events to MQTT with automatic reconnection."""

    def __init__(self, config: MQTTConfig, client_id: Optional[str] = None) -> None:
        self.config = config
        self.client = mqtt.Client(
            mqtt.CallbackAPIVersion.VERSION2,
            client_id=client_id or "",
            clean_session=True,
        )
        if config.username:
            self.client.username_pw_set(config.username, config.password or "")
        self.client.on_connect = self._on_connect
        self.client.on_disconnect = self._on_disconnect
        self._connected = threading.Event()
        self.client.reconnect_delay_set(min_delay=1, max_delay=30)

    def start(self) -> None:
        """Connect to the broker and start the network loop."""
        try:
            self.client.connect(self.config.host, int(self.config.port))
        except OSError as exc:  # pragma: no cover - network dependent
            logger.error("Initial MQTT connection failed: {}", exc)
        self.client.loop_start()

    def stop(self) -> None:
        """Stop the loop and disconnect."""
        self.client.loop_stop()
        self.client.disconnect()

    def handle_event(self, event: Event) -> None:
        """Event bus subscriber; raw audio chunks are not forwarded."""
        if isinstance(event, AudioData):
            return
        self.publish(event_topic(self.config.topic_prefix, event), event.to_payload())

    def publish(self, topic: str, payload: dict, qos: int = 0, retain: bool = False) -> None:
        """Publish a JSON payload to a topic."""
        data = json.dumps(payload)
        if not self._connected.is_set():
            logger.debug("MQTT client not connected; publishing {} anyway", topic)
        result = self.client.publish(topic, data, qos=qos, retain=retain)
        if result.rc not in (mqtt.MQTT_ERR_SUCCESS, mqtt.MQTT_ERR_NO_CONN):
            logger.error("MQTT publish to {} failed with code {}", topic, result.rc)

    # Callbacks -------------------------------------------------------

    def _on_connect(self, client, userdata, flags, reason_code, properties):  # type: ignore[override]
        if not reason_code.is_failure:
            logger.info("Connected to MQTT broker at {}:{}", self.config.host, self.config.port)
            self._connected.set()
        else:
            logger.error("MQTT connection refused ({})", reason_code)

    def _on_disconnect(self, client, userdata, disconnect_flags, reason_code, properties):  # type: ignore[override]
        if reason_code.is_failure:
            logger.warning("Unexpected MQTT disconnection ({}), retrying", reason_code)
            # give some time before declaring offline to avoid thrashing
            time.sleep(1.0)
        self._connected.clear()
