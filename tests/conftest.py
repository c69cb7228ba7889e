import threading
import time
from pathlib import Path

import numpy as np
import pytest
import soundfile as sf
from loguru import logger

from monitor.events import EventBus


class FakeStream:
    """In-memory stand-in for the sounddevice input stream."""

    def __init__(self, config, on_data, on_error, fail_open=None):
        self.config = config
        self.on_data = on_data
        self.on_error = on_error
        self.fail_open = fail_open
        self.opened = False
        self.closed = False

    def open(self):
        if self.fail_open is not None:
            raise self.fail_open
        self.opened = True

    def close(self):
        self.closed = True

    def push(self, data, overflowed=False):
        self.on_data(data, 0.0, overflowed)


class StreamFactory:
    def __init__(self, fail_open=None):
        self.fail_open = fail_open
        self.streams = []

    def __call__(self, config, on_data, on_error):
        stream = FakeStream(config, on_data, on_error, fail_open=self.fail_open)
        self.streams.append(stream)
        return stream

    @property
    def last(self):
        return self.streams[-1]


class FakePlayer:
    def __init__(self, block=False):
        self.block = block
        self.played = []
        self.stop_calls = 0
        self._stopped = threading.Event()

    def play(self, path):
        stopped = self._stopped
        self.played.append(Path(path))
        if self.block:
            stopped.wait(timeout=5.0)

    def stop(self):
        self.stop_calls += 1
        stopped, self._stopped = self._stopped, threading.Event()
        stopped.set()


class EventRecorder:
    def __init__(self, bus):
        self.events = []
        bus.subscribe(self.events.append)

    def names(self):
        return [event.name for event in self.events]

    def of_type(self, cls):
        return [event for event in self.events if isinstance(event, cls)]


def wait_for(predicate, timeout=3.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.005)
    return predicate()


def write_wav(path, seconds=1.0, sample_rate=16000, amplitude=1000, channels=1):
    frames = int(seconds * sample_rate)
    t = np.arange(frames) / sample_rate
    tone = (amplitude * np.sin(2 * np.pi * 440.0 * t)).astype(np.int16)
    data = np.repeat(tone[:, None], channels, axis=1)
    path.parent.mkdir(parents=True, exist_ok=True)
    sf.write(str(path), data, sample_rate, subtype="PCM_16")
    return path


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def recorded(bus):
    return EventRecorder(bus)


@pytest.fixture
def stream_factory():
    return StreamFactory()


@pytest.fixture
def log_messages():
    messages = []
    handler_id = logger.add(lambda message: messages.append(message.record), level="DEBUG")
    yield messages
    logger.remove(handler_id)
