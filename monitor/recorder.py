"""Recording sessions written to dated WAV files."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import List, Optional

import numpy as np
import soundfile as sf
from loguru import logger


@dataclass
class RecorderConfig:
    out_dir: Path = Path("recordings")
    sample_rate: int = 16000
    channels: int = 1


@dataclass(frozen=True)
class RecordingSession:
    id: int
    file_path: Path
    start_time: datetime
    peak_decibel: float
    duration: float


@dataclass(frozen=True)
class RecordingInfo:
    filename: str
    path: str
    size: int
    duration: float
    created: datetime


class RecordingError(Exception):
    """Raised when a recording file cannot be opened or written."""


class AudioRecorder:
    """Streams int16 chunks into one WAV file per recording session."""

    def __init__(self, config: RecorderConfig) -> None:
        self.config = config
        self._file: Optional[sf.SoundFile] = None
        self._path: Optional[Path] = None
        self._started_at: Optional[float] = None

    @property
    def is_recording(self) -> bool:
        return self._file is not None

    @property
    def file_path(self) -> Optional[Path]:
        return self._path

    def start(self, started_at: float) -> Path:
        if self._file is not None:
            logger.info("Already recording to {}", self._path)
            return self._path  # type: ignore[return-value]

        timestamp = datetime.fromtimestamp(started_at)
        path = self._next_path(timestamp)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            self._file = sf.SoundFile(
                str(path),
                mode="w",
                samplerate=self.config.sample_rate,
                channels=self.config.channels,
                format="WAV",
                subtype="PCM_16",
            )
        except (OSError, RuntimeError) as exc:
            raise RecordingError(f"Failed to start recording {path}: {exc}") from exc

        self._path = path
        self._started_at = started_at
        logger.info("Recording started, file: {}", path)
        return path

    def write(self, data: bytes) -> None:
        if self._file is None:
            return
        frame_bytes = 2 * self.config.channels
        usable = len(data) - (len(data) % frame_bytes)
        frames = np.frombuffer(data[:usable], dtype="<i2").reshape(-1, self.config.channels)
        try:
            self._file.write(frames)
        except (OSError, RuntimeError) as exc:
            raise RecordingError(f"Error writing audio data to {self._path}: {exc}") from exc

    def stop(self, stopped_at: float, peak_decibel: float) -> Optional[RecordingSession]:
        if self._file is None or self._started_at is None or self._path is None:
            logger.info("Not recording")
            return None
        self._close()
        duration = round(max(0.0, stopped_at - self._started_at), 2)
        session = RecordingSession(
            id=int(self._started_at * 1000),
            file_path=self._path,
            start_time=datetime.fromtimestamp(self._started_at),
            peak_decibel=peak_decibel,
            duration=duration,
        )
        logger.info("Recording stopped, duration: {} seconds, file: {}", duration, self._path)
        self._started_at = None
        return session

    def abort(self) -> None:
        """Close and remove a partial recording without producing a session."""
        path = self._path
        self._close()
        self._started_at = None
        self._path = None
        if path is not None and path.exists():
            path.unlink()
            logger.warning("Discarded partial recording {}", path)

    def _close(self) -> None:
        handle, self._file = self._file, None
        if handle is None:
            return
        try:
            handle.close()
        except (OSError, RuntimeError) as exc:
            logger.error("Failed to finalise recording {}: {}", self._path, exc)

    def _next_path(self, timestamp: datetime) -> Path:
        date_dir = self.config.out_dir / timestamp.strftime("%Y-%m-%d")
        stem = timestamp.strftime("%H%M%S")
        path = date_dir / f"{stem}.wav"
        suffix = 1
        while path.exists():
            path = date_dir / f"{stem}_{suffix}.wav"
            suffix += 1
        return path


def list_recordings(out_dir: Path) -> List[RecordingInfo]:
    """Return recordings found under the dated directories, newest first."""
    if not out_dir.exists():
        return []
    recordings: List[RecordingInfo] = []
    for date_dir in sorted(p for p in out_dir.iterdir() if p.is_dir()):
        for wav in date_dir.glob("*.wav"):
            stats = wav.stat()
            try:
                duration = float(sf.info(str(wav)).duration)
            except RuntimeError as exc:
                logger.warning("Unreadable recording {}: {}", wav, exc)
                duration = 0.0
            recordings.append(
                RecordingInfo(
                    filename=wav.name,
                    path=f"/{date_dir.name}/{wav.name}",
                    size=stats.st_size,
                    duration=round(duration, 2),
                    created=datetime.fromtimestamp(stats.st_mtime),
                )
            )
    recordings.sort(key=lambda info: info.created, reverse=True)
    logger.debug("Loaded {} recordings from {}", len(recordings), out_dir)
    return recordings
