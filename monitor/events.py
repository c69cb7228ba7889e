"""Outbound events produced by the capture, detection and playback stages."""

from __future__ import annotations

import threading
from dataclasses import asdict, dataclass, field, is_dataclass
from pathlib import Path
from typing import Any, Callable, ClassVar, Dict, List, Optional

from loguru import logger


@dataclass(frozen=True)
class Event:
    name: ClassVar[str] = "event"

    def to_payload(self) -> Dict[str, Any]:
        """Return a JSON-friendly mapping describing the event."""
        payload: Dict[str, Any] = {"event": self.name}
        for key, value in asdict(self).items():
            payload[key] = _jsonable(value)
        return payload


def _jsonable(value: Any) -> Any:
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, BaseException):
        return str(value)
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return value


@dataclass(frozen=True)
class CaptureStarted(Event):
    name: ClassVar[str] = "started"


@dataclass(frozen=True)
class CaptureStopped(Event):
    name: ClassVar[str] = "stopped"


@dataclass(frozen=True)
class AudioData(Event):
    name: ClassVar[str] = "audioData"

    chunk: Any = None

    def to_payload(self) -> Dict[str, Any]:
        return {
            "event": self.name,
            "sequence": self.chunk.sequence,
            "bytes": len(self.chunk.data),
        }


@dataclass(frozen=True)
class CaptureOverflow(Event):
    name: ClassVar[str] = "overflow"

    count: int = 0
    dropped_frames: int = 0


@dataclass(frozen=True)
class CaptureError(Event):
    name: ClassVar[str] = "error"

    error: Optional[BaseException] = None

    def to_payload(self) -> Dict[str, Any]:
        return {"event": self.name, "error": str(self.error) if self.error else None}


@dataclass(frozen=True)
class DecibelMeasured(Event):
    name: ClassVar[str] = "decibel"

    value: float = 0.0
    timestamp: float = 0.0
    is_recording: bool = False
    is_above_threshold: bool = False


@dataclass(frozen=True)
class RecordingStarted(Event):
    name: ClassVar[str] = "recordingStarted"

    file_path: Optional[Path] = None


@dataclass(frozen=True)
class RecordingStopped(Event):
    name: ClassVar[str] = "recordingStopped"

    session: Any = None

    def to_payload(self) -> Dict[str, Any]:
        session = self.session
        data = asdict(session) if is_dataclass(session) else {}
        return {"event": self.name, "session": _jsonable(data)}


@dataclass(frozen=True)
class PlaybackScheduled(Event):
    name: ClassVar[str] = "playbackScheduled"

    file_path: Optional[Path] = None
    delay: float = 0.0


@dataclass(frozen=True)
class PlaybackStarted(Event):
    name: ClassVar[str] = "playbackStarted"

    file_path: Optional[Path] = None
    duration: float = 0.0


@dataclass(frozen=True)
class PlaybackStopped(Event):
    name: ClassVar[str] = "playbackStopped"


EventHandler = Callable[[Event], None]


@dataclass
class EventBus:
    """Synchronous fan-out of events to registered handlers."""

    _handlers: List[EventHandler] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock)

    def subscribe(self, handler: EventHandler) -> Callable[[], None]:
        """Register a handler and return a callable that removes it again."""
        with self._lock:
            self._handlers.append(handler)

        def unsubscribe() -> None:
            with self._lock:
                if handler in self._handlers:
                    self._handlers.remove(handler)

        return unsubscribe

    def publish(self, event: Event) -> None:
        with self._lock:
            handlers = list(self._handlers)
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                logger.exception("Event handler failed for {}", event.name)
