"""Entry point for the noise mirror monitor."""

from __future__ import annotations

import argparse
import sys
import threading
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from loguru import logger

from monitor.events import CaptureError, Event, EventBus, RecordingStopped
from monitor.pipeline import NoiseMonitor
from monitor.settings import build_settings
from mqtt.mqtt_client import MQTTConfig, MQTTPublisher


def parse_args(argv: Optional[list] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Ambient noise monitor with delayed noise-mirror playback")
    parser.add_argument(
        "--config",
        default="config/config.yaml",
        help="Path to configuration file (default: config/config.yaml)",
    )
    parser.add_argument(
        "--list-devices",
        action="store_true",
        help="List available audio input devices and exit",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Run without publishing MQTT events",
    )
    return parser.parse_args(argv)


def load_config(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {path}")
    with path.open("r", encoding="utf-8") as handle:
        config = yaml.safe_load(handle)
    if not isinstance(config, dict):
        raise ValueError("Configuration file must define a mapping")
    return config


def setup_logging(log_config: Dict[str, Any]) -> None:
    level = log_config.get("level", "INFO")
    logger.remove()
    logger.add(sys.stderr, level=level)

    file_path = Path(log_config.get("file_path", "noise_mirror.log"))
    try:
        file_path.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            str(file_path),
            level=level,
            rotation="5 MB",
            retention=5,
            enqueue=True,
            backtrace=False,
            diagnose=False,
        )
    except PermissionError as exc:
        logger.warning(
            "Unable to write log file at {} ({}). Continuing with console logging only.",
            file_path,
            exc,
        )


def list_devices() -> None:
    from monitor.devices import list_input_devices

    devices = list_input_devices()
    if not devices:
        print("No audio input devices detected.")
        return
    print("Available audio input devices:")
    for idx, name, default_rate, channels in devices:
        print(
            f"[{idx}] {name} - default_samplerate={default_rate:.0f}Hz, max_input_channels={channels}"
        )


def build_mqtt(config: Dict[str, Any], dry_run: bool) -> Optional[MQTTPublisher]:
    mqtt_cfg = config.get("mqtt", {})
    if dry_run:
        logger.info("Dry run enabled; MQTT publishing is disabled")
        return None

    publisher = MQTTPublisher(
        MQTTConfig(
            host=mqtt_cfg.get("host", "localhost"),
            port=int(mqtt_cfg.get("port", 1883)),
            topic_prefix=mqtt_cfg.get("topic_prefix", "home/sensors/noise_mirror"),
            username=(mqtt_cfg.get("username") or None),
            password=(mqtt_cfg.get("password") or None),
        ),
        client_id=mqtt_cfg.get("client_id"),
    )
    publisher.start()
    return publisher


def main() -> None:
    args = parse_args()

    if args.list_devices:
        list_devices()
        return

    config = load_config(Path(args.config))
    setup_logging(config.get("logging", {}))

    settings = build_settings(config)
    events = EventBus()
    mqtt_publisher = build_mqtt(config, args.dry_run)
    if mqtt_publisher:
        events.subscribe(mqtt_publisher.handle_event)

    stopped = threading.Event()

    def on_event(event: Event) -> None:
        if isinstance(event, CaptureError):
            logger.error("Capture session ended with error: {}", event.error)
            stopped.set()
        elif isinstance(event, RecordingStopped):
            session = event.session
            logger.info(
                "Recording saved to {} ({:.2f} s, peak {:.1f} dB)",
                session.file_path,
                session.duration,
                session.peak_decibel,
            )

    events.subscribe(on_event)
    monitor = NoiseMonitor(settings, events=events)

    try:
        monitor.start()
        while not stopped.wait(timeout=1.0):
            pass
    except KeyboardInterrupt:
        logger.info("Interrupted by user, shutting down")
    finally:
        monitor.close()
        if mqtt_publisher:
            mqtt_publisher.stop()


if __name__ == "__main__":
    main()
