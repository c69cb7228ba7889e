"""MQTT fan-out of monitor events."""
