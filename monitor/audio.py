"""Audio capture intake with drop-newest backpressure."""

from __future__ import annotations

import queue
import threading
import time
from dataclasses import dataclass, replace
from typing import Callable, Optional, Protocol

from loguru import logger

from .events import AudioData, CaptureError, CaptureOverflow, CaptureStarted, CaptureStopped, EventBus


@dataclass(frozen=True)
class CaptureConfig:
    """Configuration for one capture session."""

    sample_rate: int = 16000
    channels: int = 1
    bit_depth: int = 16
    device_id: Optional[int] = None
    high_water_mark: int = 4096
    max_queue_depth: int = 64

    def __post_init__(self) -> None:
        if self.bit_depth != 16:
            raise ValueError(f"Only 16-bit capture is supported, got {self.bit_depth}")
        if self.sample_rate <= 0 or self.channels <= 0:
            raise ValueError("sample_rate and channels must be positive")

    @property
    def frame_bytes(self) -> int:
        return self.channels * self.bit_depth // 8

    @property
    def block_frames(self) -> int:
        """Frames per device callback derived from the byte high-water mark."""
        return max(1, self.high_water_mark // self.frame_bytes)


@dataclass(frozen=True)
class AudioChunk:
    """Interleaved little-endian int16 samples from one device callback."""

    data: bytes
    sequence: int
    timestamp: float
    device_time: float = 0.0


class AudioStreamError(Exception):
    """Raised when the audio stream cannot be established or dies."""


DataCallback = Callable[[bytes, float, bool], None]
ErrorCallback = Callable[[BaseException], None]


class AudioStream(Protocol):
    def open(self) -> None: ...

    def close(self) -> None: ...


StreamFactory = Callable[[CaptureConfig, DataCallback, ErrorCallback], AudioStream]


def _sounddevice_stream(config: CaptureConfig, on_data: DataCallback, on_error: ErrorCallback) -> AudioStream:
    from .devices import SoundDeviceStream

    return SoundDeviceStream(config, on_data, on_error)


class CaptureIntake:
    """Turns device callbacks into a serialized, lossy-under-load chunk sequence.

    Each chunk is handed to a single worker thread. While the worker is still
    busy with the previous chunk, newly arriving chunks are dropped and counted
    instead of queued, so the device callback never blocks.
    """

    DROP_LOG_INTERVAL = 10
    TELEMETRY_INTERVAL = 100
    LATENCY_BUDGET_SECONDS = 0.1

    def __init__(
        self,
        config: CaptureConfig,
        handler: Callable[[AudioChunk], None],
        events: Optional[EventBus] = None,
        stream_factory: Optional[StreamFactory] = None,
    ) -> None:
        self.config = config
        self._handler = handler
        self._events = events or EventBus()
        self._stream_factory = stream_factory or _sounddevice_stream
        self._state_lock = threading.Lock()
        self._running = False
        self._stream: Optional[AudioStream] = None
        self._worker: Optional[threading.Thread] = None
        self._queue: "queue.Queue[Optional[AudioChunk]]" = queue.Queue()
        self._in_flight = threading.Semaphore(1)
        self._reset_counters()

    # Public API ------------------------------------------------------

    def start(self, config: Optional[CaptureConfig] = None) -> None:
        with self._state_lock:
            if self._running:
                logger.info("Audio capture already running")
                return
            if config is not None:
                self.config = config
            self._reset_counters()
            self._queue = queue.Queue(maxsize=max(1, self.config.max_queue_depth))
            self._in_flight = threading.Semaphore(1)
            self._worker = threading.Thread(target=self._drain, name="capture-intake", daemon=True)
            self._worker.start()

            try:
                stream = self._stream_factory(self.config, self._on_data, self._on_error)
                stream.open()
            except AudioStreamError as exc:
                logger.error("Failed to start audio capture: {}", exc)
                self._stop_worker()
                self._events.publish(CaptureError(error=exc))
                return

            self._stream = stream
            self._running = True

        logger.info(
            "Audio capture started at {} Hz, {} channel(s), device {}",
            self.config.sample_rate,
            self.config.channels,
            self.config.device_id if self.config.device_id is not None else "default",
        )
        self._events.publish(CaptureStarted())

    def stop(self) -> None:
        with self._state_lock:
            if not self._running:
                logger.info("Audio capture not running")
                return
            self._running = False
            stream, self._stream = self._stream, None

        if stream is not None:
            try:
                stream.close()
            except AudioStreamError as exc:
                logger.warning("Error while closing audio stream: {}", exc)
        self._stop_worker()

        logger.info(
            "Audio capture stopped after {} chunks ({} dropped, {} overflows)",
            self._chunk_count,
            self._drop_count,
            self._overflow_count,
        )
        self._reset_counters()
        self._events.publish(CaptureStopped())

    def is_running(self) -> bool:
        return self._running

    def update_config(self, **changes) -> CaptureConfig:
        """Merge changes into the config; they take effect on the next start."""
        self.config = replace(self.config, **changes)
        if self._running:
            logger.info("Audio capture config updated; restart capture to apply: {}", self.config)
        else:
            logger.info("Audio capture config updated: {}", self.config)
        return self.config

    @property
    def drop_count(self) -> int:
        return self._drop_count

    @property
    def dropped_frames(self) -> int:
        return self._dropped_frames

    @property
    def overflow_count(self) -> int:
        return self._overflow_count

    @property
    def chunk_count(self) -> int:
        return self._chunk_count

    # Device side -----------------------------------------------------

    def _on_data(self, data: bytes, device_time: float, overflowed: bool) -> None:
        if not self._running:
            return

        if overflowed:
            self._overflow_count += 1
            logger.warning("Audio input overflow reported by device (count {})", self._overflow_count)
            self._events.publish(
                CaptureOverflow(count=self._overflow_count, dropped_frames=self._dropped_frames)
            )

        self._sequence += 1
        chunk = AudioChunk(data=bytes(data), sequence=self._sequence, timestamp=time.time(), device_time=device_time)

        if not self._in_flight.acquire(blocking=False):
            self._drop(chunk)
            return
        try:
            self._queue.put_nowait(chunk)
        except queue.Full:
            self._in_flight.release()
            self._drop(chunk)

    def _on_error(self, exc: BaseException) -> None:
        logger.error("Audio capture error: {}", exc)
        self._events.publish(CaptureError(error=exc))
        self.stop()

    def _drop(self, chunk: AudioChunk) -> None:
        self._drop_count += 1
        self._dropped_frames += len(chunk.data) // self.config.frame_bytes
        if self._drop_count % self.DROP_LOG_INTERVAL == 0:
            logger.warning(
                "Dropped {} audio chunks so far; processing is not keeping up (last sequence {})",
                self._drop_count,
                chunk.sequence,
            )

    # Worker side -----------------------------------------------------

    def _drain(self) -> None:
        queue_ = self._queue
        in_flight = self._in_flight
        while True:
            chunk = queue_.get()
            if chunk is None:
                break
            started = time.perf_counter()
            try:
                self._events.publish(AudioData(chunk=chunk))
                self._handler(chunk)
            except Exception:
                logger.exception("Audio chunk handler failed for chunk {}", chunk.sequence)
            finally:
                in_flight.release()
            self._record_timing(time.perf_counter() - started)

    def _record_timing(self, elapsed: float) -> None:
        self._chunk_count += 1
        self._processing_total += elapsed
        if self._chunk_count % self.TELEMETRY_INTERVAL != 0:
            return
        average = self._processing_total / self.TELEMETRY_INTERVAL
        self._processing_total = 0.0
        self.average_processing_time = average
        logger.debug("Average chunk processing time {:.2f} ms over {} chunks", average * 1000, self.TELEMETRY_INTERVAL)
        if average > self.LATENCY_BUDGET_SECONDS:
            logger.warning(
                "Audio processing too slow: {:.1f} ms per chunk (budget {:.0f} ms)",
                average * 1000,
                self.LATENCY_BUDGET_SECONDS * 1000,
            )

    def _stop_worker(self) -> None:
        worker, self._worker = self._worker, None
        if worker is None:
            return
        self._queue.put(None)
        if worker is not threading.current_thread():
            worker.join(timeout=5.0)

    def _reset_counters(self) -> None:
        self._sequence = 0
        self._chunk_count = 0
        self._drop_count = 0
        self._dropped_frames = 0
        self._overflow_count = 0
        self._processing_total = 0.0
        self.average_processing_time = 0.0
