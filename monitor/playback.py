"""Delayed "noise mirror" playback of finished recordings."""

from __future__ import annotations

import math
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Protocol, Union

import soundfile as sf
from loguru import logger

from .events import EventBus, PlaybackScheduled, PlaybackStarted, PlaybackStopped
from .gain import GainConfig, GainStage

FULL = "full"
DEFAULT_PLAY_DELAY = 3.0
DEFAULT_RESUME_DELAY = 2.0
PlayDuration = Union[str, float]


class Player(Protocol):
    def play(self, path: Path) -> None: ...

    def stop(self) -> None: ...


def parse_play_duration(value: object) -> PlayDuration:
    if value is None or value == FULL:
        return FULL
    try:
        seconds = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        logger.warning("Invalid play_duration {!r}, playing full recordings", value)
        return FULL
    if seconds <= 0:
        logger.warning("Invalid play_duration {!r}, playing full recordings", value)
        return FULL
    return seconds


def parse_delay(value: object) -> Optional[float]:
    """Seconds as a non-negative float, or None when value is not usable."""
    try:
        seconds = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return None
    if not math.isfinite(seconds) or seconds < 0:
        return None
    return seconds


def wav_duration(path: Path) -> float:
    """Nominal duration in seconds read from the file header."""
    return float(sf.info(str(path)).duration)


@dataclass
class PlaybackConfig:
    play_delay: float = DEFAULT_PLAY_DELAY
    play_duration: PlayDuration = FULL
    resume_detection_delay: float = DEFAULT_RESUME_DELAY
    pause_detection_during_playback: bool = True
    temp_dir: Path = Path("temp")
    gain: GainConfig = field(default_factory=GainConfig)


@dataclass
class PlaybackJob:
    file_path: Path
    scheduled_at: float
    delay_seconds: float
    enhanced_file_path: Optional[Path] = None


def _sounddevice_player() -> Player:
    from .devices import SoundDevicePlayer

    return SoundDevicePlayer()


class PlaybackCoordinator:
    """Schedules one playback job at a time and owns the detection-pause flag."""

    def __init__(
        self,
        config: PlaybackConfig,
        player: Optional[Player] = None,
        events: Optional[EventBus] = None,
    ) -> None:
        self.config = config
        self._player = player or _sounddevice_player()
        self._events = events or EventBus()
        self._lock = threading.Lock()
        self._play_lock = threading.Lock()
        self._timer: Optional[threading.Timer] = None
        self._resume_timer: Optional[threading.Timer] = None
        self._pending: Optional[PlaybackJob] = None
        self._current: Optional[PlaybackJob] = None
        self._waiting = 0
        self._detection_paused = threading.Event()

    @property
    def detection_paused(self) -> bool:
        return self._detection_paused.is_set()

    @property
    def is_playing(self) -> bool:
        return self._current is not None

    @property
    def pending_job(self) -> Optional[PlaybackJob]:
        return self._pending

    def _resolve_delay(self, delay: Optional[float]) -> float:
        value = parse_delay(delay)
        if value is not None:
            return value
        configured = parse_delay(self.config.play_delay)
        if configured is None:
            logger.warning("Invalid play_delay {!r}, using {} s", self.config.play_delay, DEFAULT_PLAY_DELAY)
            return DEFAULT_PLAY_DELAY
        return configured

    def schedule(self, file_path: Path, delay: Optional[float] = None) -> PlaybackJob:
        """Play file_path after a delay, replacing any job not yet started."""
        actual_delay = self._resolve_delay(self.config.play_delay if delay is None else delay)
        job = PlaybackJob(file_path=Path(file_path), scheduled_at=time.time(), delay_seconds=actual_delay)

        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                if self._pending is not None:
                    logger.info("Replacing scheduled playback of {}", self._pending.file_path)
            if self._resume_timer is not None:
                self._resume_timer.cancel()
                self._resume_timer = None
            self._pending = job
            timer = threading.Timer(actual_delay, self._fire, args=(job,))
            timer.daemon = True
            self._timer = timer

        logger.info("Scheduled to play in {} seconds: {}", actual_delay, job.file_path)
        self._events.publish(PlaybackScheduled(file_path=job.file_path, delay=actual_delay))
        if self.config.pause_detection_during_playback:
            self._detection_paused.set()
        timer.start()
        return job

    def _fire(self, job: PlaybackJob) -> None:
        with self._lock:
            if self._pending is not job:
                return
            self._pending = None
            self._timer = None
        self.run(job)

    def play(self, file_path: Path) -> None:
        """Play a file immediately on the calling thread."""
        self.run(PlaybackJob(file_path=Path(file_path), scheduled_at=time.time(), delay_seconds=0.0))

    def run(self, job: PlaybackJob) -> None:
        with self._lock:
            self._waiting += 1
        if self._current is not None:
            self.stop()
        with self._play_lock:
            with self._lock:
                self._waiting -= 1
            self._current = job
            try:
                self._play_job(job)
                logger.info("Playback completed: {}", job.file_path)
            except Exception:
                logger.exception("Playback failed: {}", job.file_path)
            finally:
                self._current = None
                self._cleanup(job)
                self._events.publish(PlaybackStopped())
                with self._lock:
                    superseded = self._waiting > 0
                if superseded:
                    logger.info("Playback interrupted by another job, detection stays paused")
                else:
                    self._schedule_resume()

    def _play_job(self, job: PlaybackJob) -> None:
        source = job.file_path.resolve()
        if not source.exists():
            raise FileNotFoundError(f"File does not exist: {source}")

        play_file = source
        if not self.config.gain.is_identity:
            enhanced = self.config.temp_dir / f"enhanced_{int(time.time() * 1000)}.wav"
            job.enhanced_file_path = enhanced
            play_file = GainStage(self.config.gain).process_file(source, enhanced)

        duration = wav_duration(play_file)
        limit = self.config.play_duration
        if limit == FULL:
            logger.info("Playing {} ({:.2f} s)", source, duration)
            self._events.publish(PlaybackStarted(file_path=source, duration=duration))
            self._player.play(play_file)
            return

        play_for = min(duration, float(limit))
        logger.info("Playing {} limited to {:.2f} s of {:.2f} s", source, play_for, duration)
        self._events.publish(PlaybackStarted(file_path=source, duration=play_for))
        self._play_with_timeout(play_file, play_for)

    def _play_with_timeout(self, path: Path, seconds: float) -> None:
        failure: list = []

        def target() -> None:
            try:
                self._player.play(path)
            except Exception as exc:
                failure.append(exc)

        worker = threading.Thread(target=target, name="playback", daemon=True)
        worker.start()
        worker.join(timeout=seconds)
        if worker.is_alive():
            logger.info("Playback timeout after {:.2f} s, stopping actively", seconds)
            self._player.stop()
            worker.join()
        if failure:
            raise failure[0]

    def stop(self) -> None:
        """Interrupt the current playback, if any."""
        if self._current is None:
            return
        logger.info("Stopping playback of {}", self._current.file_path)
        self._player.stop()

    def _schedule_resume(self) -> None:
        if not self.config.pause_detection_during_playback:
            return
        delay = parse_delay(self.config.resume_detection_delay)
        if delay is None:
            delay = DEFAULT_RESUME_DELAY
        logger.info("Playback ended, will resume threshold detection in {} s", delay)
        with self._lock:
            if self._pending is not None:
                return
            if self._resume_timer is not None:
                self._resume_timer.cancel()
            timer = threading.Timer(delay, self._resume_detection)
            timer.daemon = True
            self._resume_timer = timer
        timer.start()

    def _resume_detection(self) -> None:
        with self._lock:
            if self._pending is not None:
                return
            self._resume_timer = None
        self._detection_paused.clear()

    def _cleanup(self, job: PlaybackJob) -> None:
        enhanced = job.enhanced_file_path
        if enhanced is None:
            return
        try:
            enhanced.unlink(missing_ok=True)
            logger.info("Deleted temporary file: {}", enhanced)
        except OSError as exc:
            logger.warning("Delete temporary file warning: {}", exc)
        job.enhanced_file_path = None

    def shutdown(self) -> None:
        with self._lock:
            for timer in (self._timer, self._resume_timer):
                if timer is not None:
                    timer.cancel()
            self._timer = None
            self._resume_timer = None
            self._pending = None
        self.stop()
        self._detection_paused.clear()
