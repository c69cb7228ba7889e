"""Per-chunk loudness estimation in calibrated decibels."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Tuple

import numpy as np
from scipy import fft

from .audio import AudioChunk

STANDARD_REFERENCE = 1000.0
STANDARD_OFFSET_DB = 96.0
A_WEIGHTING_MIN_HZ = 20
A_WEIGHTING_CALIBRATION_DB = 2.0
DEFAULT_VOICE_RANGE = (85.0, 801.0)


@dataclass(frozen=True)
class FastDecibelConstants:
    """Empirically tuned constants of the fast estimator.

    Threshold defaults are calibrated against these values, so they are kept
    as-is rather than derived.
    """

    peak_weight: float = 0.7
    mean_weight: float = 0.3
    divisor: float = math.sqrt(2.0)
    reference: float = 1000.0
    reference_scale: float = 0.3
    offset_db: float = 86.0


@dataclass
class LoudnessConfig:
    use_fast_decibel: bool = True
    enable_a_weighting: bool = False
    enable_voice_filter: bool = False
    voice_frequency_range: Optional[Tuple[float, float]] = DEFAULT_VOICE_RANGE
    fast_constants: FastDecibelConstants = field(default_factory=FastDecibelConstants)


def parse_voice_range(value: Any) -> Optional[Tuple[float, float]]:
    """Normalise a voice band given as a pair or a {min, max} / {min_hz, max_hz} mapping."""
    if value is None:
        return None
    if isinstance(value, Mapping):
        low = value.get("min", value.get("min_hz", DEFAULT_VOICE_RANGE[0]))
        high = value.get("max", value.get("max_hz", DEFAULT_VOICE_RANGE[1]))
    else:
        low, high = value
    return (float(low), float(high))


def parse_flag(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


@dataclass(frozen=True)
class DecibelSample:
    value: float
    timestamp: float


def decode_pcm16(data: bytes) -> np.ndarray:
    """Interpret bytes as little-endian int16 samples; an odd trailing byte is ignored."""
    usable = len(data) - (len(data) % 2)
    return np.frombuffer(data[:usable], dtype="<i2").astype(np.float64)


def _finite_or_zero(value: float) -> float:
    if not math.isfinite(value):
        return 0.0
    return max(0.0, value)


def standard_decibel(samples: np.ndarray) -> float:
    """RMS loudness: 20*log10(rms / 1000) + 96, floored at 0."""
    if samples.size == 0:
        return 0.0
    rms = float(np.sqrt(np.mean(np.square(samples, dtype=np.float64))))
    if not math.isfinite(rms) or rms <= 0:
        return 0.0
    return _finite_or_zero(20.0 * math.log10(rms / STANDARD_REFERENCE) + STANDARD_OFFSET_DB)


def fast_decibel(samples: np.ndarray, constants: FastDecibelConstants = FastDecibelConstants()) -> float:
    """Peak-biased loudness that reacts quickly to transients."""
    if samples.size == 0:
        return 0.0
    magnitudes = np.abs(samples.astype(np.float64, copy=False))
    peak = float(magnitudes.max())
    mean_abs = float(magnitudes.mean())
    rms = (constants.peak_weight * peak + constants.mean_weight * mean_abs) / constants.divisor
    if not math.isfinite(rms) or rms <= 0:
        return 0.0
    reference = constants.reference * constants.reference_scale
    return _finite_or_zero(20.0 * math.log10((rms + 1.0) / reference) + constants.offset_db)


def a_weighting_db(frequency: np.ndarray) -> np.ndarray:
    """IEC 61672 A-weighting magnitude in dB including the +2.0 dB calibration."""
    f2 = np.square(np.asarray(frequency, dtype=np.float64))
    numerator = (12194.0**2) * np.square(f2)
    denominator = (
        (f2 + 20.6**2)
        * np.sqrt((f2 + 107.7**2) * (f2 + 737.9**2))
        * (f2 + 12194.0**2)
    )
    with np.errstate(divide="ignore"):
        return 20.0 * np.log10(numerator / denominator) + A_WEIGHTING_CALIBRATION_DB


class AWeightingTable:
    """Linear A-weighting multipliers for every integer frequency in [20 Hz, Nyquist]."""

    def __init__(self, sample_rate: int) -> None:
        self.sample_rate = sample_rate
        self.max_hz = max(A_WEIGHTING_MIN_HZ, sample_rate // 2)
        frequencies = np.arange(A_WEIGHTING_MIN_HZ, self.max_hz + 1, dtype=np.float64)
        coefficients = np.power(10.0, a_weighting_db(frequencies) / 20.0)
        coefficients.setflags(write=False)
        self.coefficients = coefficients

    def lookup(self, frequencies: np.ndarray) -> np.ndarray:
        index = np.clip(np.rint(frequencies), A_WEIGHTING_MIN_HZ, self.max_hz).astype(np.int64)
        return self.coefficients[index - A_WEIGHTING_MIN_HZ]


def isolate_band(samples: np.ndarray, sample_rate: int, min_hz: float, max_hz: float) -> np.ndarray:
    """Zero every frequency bin outside [min_hz, max_hz] and return rounded samples."""
    if samples.size == 0 or min_hz >= max_hz:
        return samples
    spectrum = fft.rfft(samples)
    freqs = fft.rfftfreq(samples.size, d=1.0 / sample_rate)
    spectrum[(freqs < min_hz) | (freqs > max_hz)] = 0
    return np.rint(fft.irfft(spectrum, n=samples.size))


def apply_a_weighting(samples: np.ndarray, table: AWeightingTable) -> np.ndarray:
    if samples.size == 0:
        return samples
    spectrum = fft.rfft(samples)
    freqs = fft.rfftfreq(samples.size, d=1.0 / table.sample_rate)
    spectrum *= table.lookup(freqs)
    return np.rint(fft.irfft(spectrum, n=samples.size))


class LoudnessEstimator:
    """Converts raw chunks to decibel samples using the configured algorithm."""

    def __init__(self, config: LoudnessConfig, sample_rate: int) -> None:
        self.config = config
        self.sample_rate = sample_rate
        self._weighting: Optional[AWeightingTable] = None

    def set_sample_rate(self, sample_rate: int) -> None:
        if sample_rate != self.sample_rate:
            self.sample_rate = sample_rate
            self._weighting = None

    @property
    def weighting_table(self) -> AWeightingTable:
        if self._weighting is None or self._weighting.sample_rate != self.sample_rate:
            self._weighting = AWeightingTable(self.sample_rate)
        return self._weighting

    def measure(self, data: bytes) -> float:
        samples = decode_pcm16(data)
        if samples.size == 0:
            return 0.0
        cfg = self.config

        band = cfg.voice_frequency_range
        if cfg.enable_voice_filter and band is not None:
            samples = isolate_band(samples, self.sample_rate, band[0], band[1])
        if cfg.enable_a_weighting:
            samples = apply_a_weighting(samples, self.weighting_table)

        if cfg.use_fast_decibel:
            return fast_decibel(samples, cfg.fast_constants)
        return standard_decibel(samples)

    def sample(self, chunk: AudioChunk) -> DecibelSample:
        return DecibelSample(value=self.measure(chunk.data), timestamp=chunk.timestamp)
