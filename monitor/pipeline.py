"""Noise monitor: capture -> loudness -> threshold -> recording -> playback."""

from __future__ import annotations

import threading
import time
from dataclasses import fields
from pathlib import Path
from typing import Any, List, Optional

from loguru import logger

from .audio import AudioChunk, CaptureIntake, StreamFactory
from .events import CaptureError, CaptureStopped, DecibelMeasured, Event, EventBus, RecordingStarted, RecordingStopped
from .gain import GainConfig
from .loudness import LoudnessConfig, LoudnessEstimator, parse_flag, parse_voice_range
from .playback import PlaybackConfig, PlaybackCoordinator, Player, parse_delay, parse_play_duration
from .recorder import AudioRecorder, RecordingError, RecordingInfo, list_recordings
from .settings import MonitorSettings
from .threshold import Decision, ThresholdConfig, ThresholdStateMachine

_CAPTURE_KEYS = {"sample_rate", "channels", "device_id", "high_water_mark", "max_queue_depth"}


def _field_names(cls) -> set:
    return {f.name for f in fields(cls)}


class NoiseMonitor:
    """Runs the decision pipeline on the capture worker thread.

    Loudness, hysteresis and recorder writes for one chunk happen in arrival
    order on a single thread. Playback runs on its own timers and only feeds
    back the detection-pause flag.
    """

    def __init__(
        self,
        settings: MonitorSettings,
        events: Optional[EventBus] = None,
        stream_factory: Optional[StreamFactory] = None,
        player: Optional[Player] = None,
    ) -> None:
        self.settings = settings
        self.events = events or EventBus()
        self.capture = CaptureIntake(settings.capture, self.process_chunk, self.events, stream_factory)
        self.estimator = LoudnessEstimator(settings.loudness, settings.capture.sample_rate)
        self.threshold = ThresholdStateMachine(settings.threshold)
        self.recorder = AudioRecorder(settings.recorder)
        self.playback = PlaybackCoordinator(settings.playback, player, self.events)
        self._capture_failed = False
        self.events.subscribe(self._on_event)

    # Lifecycle -------------------------------------------------------

    def start(self) -> None:
        if self.capture.is_running():
            logger.info("Detection already running")
            return
        capture_cfg = self.capture.config
        self.recorder.config.sample_rate = capture_cfg.sample_rate
        self.recorder.config.channels = capture_cfg.channels
        self.estimator.set_sample_rate(capture_cfg.sample_rate)
        self.threshold.reset()
        self._capture_failed = False
        logger.info("Starting detection (threshold {} dB)", self.threshold.config.threshold)
        self.capture.start()

    def stop(self) -> None:
        if not self.capture.is_running():
            logger.info("Detection not running")
            return
        logger.info("Stopping detection")
        self.capture.stop()
        if self.threshold.force_stop() is Decision.STOP_RECORDING:
            self._stop_recording(time.time())

    def close(self) -> None:
        self.stop()
        self.playback.shutdown()

    @property
    def is_running(self) -> bool:
        return self.capture.is_running()

    @property
    def is_recording(self) -> bool:
        return self.threshold.state.is_recording

    @property
    def current_decibel(self) -> float:
        return self.threshold.current_decibel

    @property
    def peak_decibel(self) -> float:
        return self.threshold.peak_decibel

    # Chunk path ------------------------------------------------------

    def process_chunk(self, chunk: AudioChunk) -> None:
        sample = self.estimator.sample(chunk)
        logger.debug("Chunk {}: {} bytes, {:.2f} dB", chunk.sequence, len(chunk.data), sample.value)

        if self.playback.detection_paused:
            self.threshold.pause()
        else:
            self.threshold.resume()

        decision = self.threshold.update(sample)
        if decision is Decision.START_RECORDING:
            self._start_recording(sample.timestamp)
        elif decision is Decision.STOP_RECORDING:
            self._stop_recording(sample.timestamp)

        if self.recorder.is_recording:
            try:
                self.recorder.write(chunk.data)
            except RecordingError as exc:
                self._fail(exc)

        state = self.threshold.state
        self.events.publish(
            DecibelMeasured(
                value=sample.value,
                timestamp=sample.timestamp,
                is_recording=state.is_recording,
                is_above_threshold=state.is_above_threshold,
            )
        )

    def _start_recording(self, timestamp: float) -> None:
        try:
            path = self.recorder.start(timestamp)
        except RecordingError as exc:
            self._fail(exc)
            return
        self.events.publish(RecordingStarted(file_path=path))

    def _stop_recording(self, timestamp: float) -> None:
        session = self.recorder.stop(timestamp, self.threshold.peak_decibel)
        if session is None:
            return
        self.events.publish(RecordingStopped(session=session))
        self.playback.schedule(session.file_path)

    def _fail(self, exc: RecordingError) -> None:
        logger.error("Recording failed, stopping capture: {}", exc)
        self.threshold.abort()
        self.recorder.abort()
        self.events.publish(CaptureError(error=exc))
        if self.capture.is_running():
            self.capture.stop()

    def _on_event(self, event: Event) -> None:
        if isinstance(event, CaptureError):
            self._capture_failed = True
        elif isinstance(event, CaptureStopped) and self._capture_failed:
            if self.recorder.is_recording:
                self.threshold.abort()
                self.recorder.abort()

    # Collaborator operations -----------------------------------------

    def update_config(self, **changes: Any) -> None:
        """Merge flat config keys into the owning component configs."""
        logger.info("Updating config: {}", changes)
        settings = self.settings
        capture_changes = {k: v for k, v in changes.items() if k in _CAPTURE_KEYS}
        if capture_changes:
            settings.capture = self.capture.update_config(**capture_changes)

        for key, value in changes.items():
            if key in _CAPTURE_KEYS:
                continue
            if key in _field_names(ThresholdConfig):
                setattr(settings.threshold, key, float(value))
            elif key == "voice_frequency_range":
                settings.loudness.voice_frequency_range = parse_voice_range(value)
            elif key in ("use_fast_decibel", "enable_a_weighting", "enable_voice_filter"):
                setattr(settings.loudness, key, parse_flag(value))
            elif key in _field_names(LoudnessConfig):
                setattr(settings.loudness, key, value)
            elif key in _field_names(GainConfig):
                setattr(settings.playback.gain, key, float(value))
            elif key == "play_duration":
                settings.playback.play_duration = parse_play_duration(value)
            elif key in ("play_delay", "resume_detection_delay"):
                delay = parse_delay(value)
                if delay is None:
                    logger.warning("Ignoring invalid {} {!r}", key, value)
                else:
                    setattr(settings.playback, key, delay)
            elif key == "pause_detection_during_playback":
                settings.playback.pause_detection_during_playback = parse_flag(value)
            elif key == "temp_dir":
                settings.playback.temp_dir = Path(value)
            elif key in _field_names(PlaybackConfig):
                setattr(settings.playback, key, value)
            elif key == "out_dir":
                settings.recorder.out_dir = Path(value)
            else:
                logger.warning("Ignoring unknown config key {}", key)

    def play_recording(self, file_path: Path) -> threading.Thread:
        logger.info("Playing recording: {}", file_path)
        worker = threading.Thread(target=self.playback.play, args=(Path(file_path),), name="manual-playback", daemon=True)
        worker.start()
        return worker

    def stop_playback(self) -> None:
        self.playback.stop()

    def recordings(self) -> List[RecordingInfo]:
        return list_recordings(self.settings.recorder.out_dir)
