"""Threshold hysteresis that turns loudness into record start/stop decisions."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Optional

from loguru import logger

from .loudness import DecibelSample


@dataclass
class ThresholdConfig:
    threshold: float = 65.0
    delay_before_record: float = 2.0
    keep_recording_after_silence: float = 10.0
    max_record_duration: float = 10800.0


class Decision(enum.Enum):
    START_RECORDING = "start"
    STOP_RECORDING = "stop"


@dataclass
class ThresholdState:
    is_above_threshold: bool = False
    above_since: Optional[float] = None
    below_since: Optional[float] = None
    is_recording: bool = False
    recording_since: Optional[float] = None


@dataclass
class ThresholdStateMachine:
    """Edge-triggered hysteresis over a stream of decibel samples.

    Timers are measured on the sample timestamps, so detection resolution is
    the chunk arrival rate. Pausing skips evaluation without touching timers.
    """

    config: ThresholdConfig = field(default_factory=ThresholdConfig)
    state: ThresholdState = field(default_factory=ThresholdState)
    current_decibel: float = 0.0
    peak_decibel: float = 0.0
    _paused: bool = False

    @property
    def paused(self) -> bool:
        return self._paused

    def pause(self) -> None:
        if not self._paused:
            logger.info("Threshold detection paused")
        self._paused = True

    def resume(self) -> None:
        if self._paused:
            logger.info("Threshold detection resumed")
        self._paused = False

    def update(self, sample: DecibelSample) -> Optional[Decision]:
        """Feed one sample; returns a decision when a transition fires."""
        self.current_decibel = sample.value
        if self.state.is_recording and sample.value > self.peak_decibel:
            self.peak_decibel = sample.value
        if self._paused:
            return None
        return self._evaluate(sample)

    def _evaluate(self, sample: DecibelSample) -> Optional[Decision]:
        cfg = self.config
        state = self.state
        now = sample.timestamp
        is_above = sample.value >= cfg.threshold

        if is_above != state.is_above_threshold:
            if is_above:
                state.above_since = now
                state.below_since = None
            else:
                state.below_since = now
                state.above_since = None
            state.is_above_threshold = is_above

        if state.is_recording and state.recording_since is not None:
            if now - state.recording_since >= cfg.max_record_duration:
                logger.info("Recording reached maximum duration of {} s", cfg.max_record_duration)
                return self._stop()

        if is_above and state.above_since is not None and not state.is_recording:
            elapsed = now - state.above_since
            logger.debug("Above threshold for {:.2f} s (delay {} s)", elapsed, cfg.delay_before_record)
            if elapsed >= cfg.delay_before_record:
                state.is_recording = True
                state.recording_since = now
                self.peak_decibel = sample.value
                return Decision.START_RECORDING

        if not is_above and state.below_since is not None and state.is_recording:
            elapsed = now - state.below_since
            logger.debug("Below threshold for {:.2f} s (hold {} s)", elapsed, cfg.keep_recording_after_silence)
            if elapsed >= cfg.keep_recording_after_silence:
                return self._stop()

        return None

    def _stop(self) -> Decision:
        self.state.is_recording = False
        self.state.recording_since = None
        return Decision.STOP_RECORDING

    def force_stop(self) -> Optional[Decision]:
        """End an in-progress recording regardless of level, e.g. on shutdown."""
        if not self.state.is_recording:
            return None
        return self._stop()

    def abort(self) -> None:
        """Roll back a start decision whose recording could not be opened."""
        if self.state.is_recording:
            logger.warning("Recording aborted")
        self.state.is_recording = False
        self.state.recording_since = None

    def reset(self) -> None:
        """Clear timers and levels for a fresh capture session."""
        self.state = ThresholdState()
        self.current_decibel = 0.0
        self.peak_decibel = 0.0
        self._paused = False
