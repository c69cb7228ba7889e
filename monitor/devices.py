"""sounddevice adapters for capture and playback."""

from __future__ import annotations

import threading
from pathlib import Path
from typing import List, Optional, Tuple

import sounddevice as sd
import soundfile as sf
from loguru import logger

from .audio import AudioStreamError, CaptureConfig, DataCallback, ErrorCallback


def list_input_devices() -> List[Tuple[int, str, float, int]]:
    """Return a list of available input devices."""
    devices = sd.query_devices()
    result: List[Tuple[int, str, float, int]] = []
    for idx, info in enumerate(devices):
        if info.get("max_input_channels", 0) > 0:
            result.append(
                (
                    idx,
                    info.get("name", f"Device {idx}"),
                    float(info.get("default_samplerate", 0) or 0),
                    int(info.get("max_input_channels", 0)),
                )
            )
    return result


class SoundDeviceStream:
    """Raw int16 input stream delivering interleaved bytes per callback."""

    def __init__(self, config: CaptureConfig, on_data: DataCallback, on_error: ErrorCallback) -> None:
        self.config = config
        self._on_data = on_data
        self._on_error = on_error
        self._stream: Optional[sd.RawInputStream] = None
        self._closing = False

    def open(self) -> None:
        self._closing = False
        try:
            self._stream = sd.RawInputStream(
                device=self.config.device_id,
                samplerate=self.config.sample_rate,
                blocksize=self.config.block_frames,
                channels=self.config.channels,
                dtype="int16",
                callback=self._callback,
                finished_callback=self._finished,
            )
            self._stream.start()
        except sd.PortAudioError as exc:
            self._stream = None
            raise AudioStreamError(
                f"Unable to open microphone stream at {self.config.sample_rate} Hz "
                f"(device {self.config.device_id}): {exc}"
            ) from exc

    def close(self) -> None:
        self._closing = True
        stream, self._stream = self._stream, None
        if stream is None:
            return
        try:
            stream.stop()
            stream.close()
        except sd.PortAudioError as exc:
            raise AudioStreamError(str(exc)) from exc

    def _callback(self, indata, frames, time_info, status):  # type: ignore[override]
        overflowed = bool(status.input_overflow)
        if status and not overflowed:
            logger.warning("Audio callback status: {}", status)
        self._on_data(bytes(indata), float(time_info.inputBufferAdcTime), overflowed)

    def _finished(self) -> None:
        if self._closing:
            return
        # PortAudio must not be closed from its own callback thread.
        threading.Thread(
            target=self._on_error,
            args=(AudioStreamError("Audio stream terminated unexpectedly"),),
            name="capture-error",
            daemon=True,
        ).start()


class SoundDevicePlayer:
    """Blocking WAV playback through the default output device."""

    def play(self, path: Path) -> None:
        data, sample_rate = sf.read(str(path), dtype="int16", always_2d=True)
        sd.play(data, sample_rate)
        sd.wait()

    def stop(self) -> None:
        sd.stop()
