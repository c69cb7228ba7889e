"""Offline gain and soft noise gate applied to recordings before playback."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import numpy as np
from loguru import logger
from scipy.io import wavfile

_BIT_DEPTHS = {("u", 1): 8, ("i", 2): 16}


@dataclass
class GainConfig:
    gain_factor: float = 901.0
    noise_gate_threshold: float = 1000.0
    noise_gate_ratio: float = 0.1

    @property
    def is_identity(self) -> bool:
        return self.gain_factor == 1.0 and self.noise_gate_threshold <= 0


def _gain_16bit(samples: np.ndarray, config: GainConfig) -> np.ndarray:
    values = samples.astype(np.float64)
    if config.noise_gate_threshold > 0:
        gated = np.abs(values) < config.noise_gate_threshold
        values[gated] *= config.noise_gate_ratio
    values *= config.gain_factor
    return np.rint(np.clip(values, -32768, 32767)).astype(np.int16)


def _gain_8bit(samples: np.ndarray, config: GainConfig) -> np.ndarray:
    centered = samples.astype(np.float64) - 128.0
    if config.noise_gate_threshold > 0:
        gated = np.abs(centered) < config.noise_gate_threshold
        centered[gated] *= config.noise_gate_ratio
    values = 128.0 + centered * config.gain_factor
    return np.rint(np.clip(values, 0, 255)).astype(np.uint8)


def apply_gain(data: bytes, bit_depth: int, config: GainConfig) -> bytes:
    """Return data with gain applied; same length and format as the input.

    Each sample is processed independently, so chunks may be split anywhere
    on a sample boundary. Unsupported bit depths pass through unchanged.
    """
    if bit_depth == 16:
        usable = len(data) - (len(data) % 2)
        samples = np.frombuffer(data[:usable], dtype="<i2")
        return _gain_16bit(samples, config).astype("<i2").tobytes() + data[usable:]
    if bit_depth == 8:
        samples = np.frombuffer(data, dtype=np.uint8)
        return _gain_8bit(samples, config).tobytes()
    logger.warning("Unsupported bit depth {}, skipping gain", bit_depth)
    return data


class GainStage:
    """Streams a WAV file through the gain transform block by block."""

    def __init__(self, config: GainConfig, block_frames: int = 16384) -> None:
        self.config = config
        self.block_frames = block_frames

    def process(self, data: bytes, bit_depth: int) -> bytes:
        return apply_gain(data, bit_depth, self.config)

    def process_file(self, source: Path, destination: Path) -> Path:
        """Write the gained copy of source to destination and return the file to play.

        Files scipy cannot map (e.g. 24-bit PCM) are returned unchanged.
        """
        try:
            sample_rate, audio = wavfile.read(str(source), mmap=True)
        except ValueError as exc:
            logger.warning("Unsupported sample format in {} ({}), skipping gain", source, exc)
            return source
        bit_depth = _BIT_DEPTHS.get((audio.dtype.kind, audio.dtype.itemsize))
        channels = 1 if audio.ndim == 1 else audio.shape[1]
        logger.info(
            "Applying gain x{} (noise gate {}) to {} ({} Hz, {} ch, {})",
            self.config.gain_factor,
            self.config.noise_gate_threshold,
            source,
            sample_rate,
            channels,
            f"{bit_depth}-bit" if bit_depth else audio.dtype,
        )

        if bit_depth is None:
            logger.warning("Unsupported sample format {} in {}, skipping gain", audio.dtype, source)
            output = np.array(audio)
        else:
            output = np.empty(audio.shape, dtype=audio.dtype)
            for start in range(0, audio.shape[0], self.block_frames):
                block = np.ascontiguousarray(audio[start : start + self.block_frames])
                processed = apply_gain(block.tobytes(), bit_depth, self.config)
                output[start : start + self.block_frames] = np.frombuffer(
                    processed, dtype=audio.dtype
                ).reshape(block.shape)

        destination.parent.mkdir(parents=True, exist_ok=True)
        wavfile.write(str(destination), sample_rate, output)
        del audio
        logger.info("Gain processing completed: {}", destination)
        return destination
