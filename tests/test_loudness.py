import math
import struct

import numpy as np
import pytest

from monitor.audio import AudioChunk
from monitor.loudness import (
    AWeightingTable,
    FastDecibelConstants,
    LoudnessConfig,
    LoudnessEstimator,
    a_weighting_db,
    apply_a_weighting,
    decode_pcm16,
    fast_decibel,
    isolate_band,
    standard_decibel,
)

SAMPLE_RATE = 16000


def _pcm16(values):
    return struct.pack("<" + "h" * len(values), *values)


def _tone(freq, amplitude=10000, samples=1600, sample_rate=SAMPLE_RATE):
    t = np.arange(samples) / sample_rate
    return np.rint(amplitude * np.sin(2 * math.pi * freq * t))


def test_decode_pcm16_ignores_trailing_byte():
    samples = decode_pcm16(_pcm16([1, -2, 32767]) + b"\x7f")
    assert samples.tolist() == [1.0, -2.0, 32767.0]


@pytest.mark.parametrize("use_fast", [True, False])
@pytest.mark.parametrize("data", [b"", b"\x01", bytes(200)])
def test_degenerate_input_is_exactly_zero(use_fast, data):
    estimator = LoudnessEstimator(LoudnessConfig(use_fast_decibel=use_fast), SAMPLE_RATE)
    assert estimator.measure(data) == 0.0


def test_standard_decibel_reference_level():
    assert standard_decibel(np.full(100, 1000.0)) == pytest.approx(96.0)
    assert standard_decibel(np.full(100, 200.0)) == pytest.approx(20 * math.log10(0.2) + 96)


def test_standard_decibel_clamps_negative_to_zero():
    samples = np.zeros(10000)
    samples[0] = 1.0
    # rms 0.01 -> -4 dB before clamping
    assert standard_decibel(samples) == 0.0


def test_fast_decibel_matches_weighted_formula():
    samples = np.array([1000.0, -500.0, 250.0, 0.0])
    peak, mean_abs = 1000.0, 437.5
    rms = (0.7 * peak + 0.3 * mean_abs) / math.sqrt(2)
    expected = 20 * math.log10((rms + 1) / 300.0) + 86
    assert fast_decibel(samples) == pytest.approx(expected)


def test_fast_decibel_constants_are_configurable():
    samples = np.full(10, 1000.0)
    louder = fast_decibel(samples, FastDecibelConstants(offset_db=96.0))
    assert louder == pytest.approx(fast_decibel(samples) + 10.0)


def test_fast_decibel_handles_most_negative_sample():
    assert math.isfinite(fast_decibel(decode_pcm16(_pcm16([-32768] * 8))))


def test_loudness_is_finite_and_non_negative_for_varied_input():
    rng = np.random.default_rng(1234)
    blocks = [
        rng.integers(-32768, 32767, size=1024, dtype=np.int16),
        rng.integers(-3, 3, size=1024, dtype=np.int16),
        np.full(512, 32767, dtype=np.int16),
        np.full(512, -32768, dtype=np.int16),
        np.array([0, 0, 1], dtype=np.int16),
    ]
    configs = [
        LoudnessConfig(use_fast_decibel=True),
        LoudnessConfig(use_fast_decibel=False),
        LoudnessConfig(enable_a_weighting=True),
        LoudnessConfig(use_fast_decibel=False, enable_voice_filter=True),
        LoudnessConfig(enable_a_weighting=True, enable_voice_filter=True),
    ]
    for config in configs:
        estimator = LoudnessEstimator(config, SAMPLE_RATE)
        for block in blocks:
            value = estimator.measure(block.astype("<i2").tobytes())
            assert math.isfinite(value)
            assert value >= 0.0


def test_a_weighting_is_unity_at_one_kilohertz():
    assert float(a_weighting_db(np.array([1000.0]))[0]) == pytest.approx(0.0, abs=0.01)
    table = AWeightingTable(SAMPLE_RATE)
    assert float(table.lookup(np.array([1000.0]))[0]) == pytest.approx(1.0, abs=0.002)


def test_a_weighting_table_covers_integer_range_and_clamps():
    table = AWeightingTable(SAMPLE_RATE)
    assert table.coefficients.size == SAMPLE_RATE // 2 - 20 + 1
    assert not table.coefficients.flags.writeable
    looked_up = table.lookup(np.array([0.0, 5.0, 20.4, 99999.0]))
    assert looked_up[0] == table.coefficients[0]
    assert looked_up[1] == table.coefficients[0]
    assert looked_up[2] == table.coefficients[0]
    assert looked_up[3] == table.coefficients[-1]


def test_a_weighting_attenuates_low_frequencies():
    table = AWeightingTable(SAMPLE_RATE)
    hum = _tone(50.0)
    weighted = apply_a_weighting(hum, table)
    assert standard_decibel(weighted) < standard_decibel(hum) - 20


def test_isolate_band_keeps_voice_and_removes_out_of_band():
    voice = _tone(300.0)
    whistle = _tone(2000.0)
    kept = isolate_band(voice, SAMPLE_RATE, 85.0, 801.0)
    removed = isolate_band(whistle, SAMPLE_RATE, 85.0, 801.0)
    assert np.max(np.abs(kept - voice)) <= 1.0
    assert np.max(np.abs(removed)) <= 1.0


def test_isolate_band_is_noop_for_inverted_range():
    voice = _tone(300.0)
    assert isolate_band(voice, SAMPLE_RATE, 801.0, 85.0) is voice


def test_voice_filter_respects_disabled_range():
    data = _tone(2000.0).astype("<i2").tobytes()
    unfiltered = LoudnessEstimator(LoudnessConfig(use_fast_decibel=False), SAMPLE_RATE).measure(data)
    no_range = LoudnessEstimator(
        LoudnessConfig(use_fast_decibel=False, enable_voice_filter=True, voice_frequency_range=None),
        SAMPLE_RATE,
    ).measure(data)
    filtered = LoudnessEstimator(
        LoudnessConfig(use_fast_decibel=False, enable_voice_filter=True), SAMPLE_RATE
    ).measure(data)
    assert no_range == pytest.approx(unfiltered)
    assert filtered < unfiltered - 40


def test_weighting_table_is_built_once_per_sample_rate():
    estimator = LoudnessEstimator(LoudnessConfig(enable_a_weighting=True), SAMPLE_RATE)
    first = estimator.weighting_table
    estimator.measure(_tone(1000.0).astype("<i2").tobytes())
    assert estimator.weighting_table is first

    estimator.set_sample_rate(48000)
    rebuilt = estimator.weighting_table
    assert rebuilt is not first
    assert rebuilt.sample_rate == 48000


def test_sample_carries_chunk_timestamp():
    estimator = LoudnessEstimator(LoudnessConfig(use_fast_decibel=False), SAMPLE_RATE)
    chunk = AudioChunk(data=_pcm16([1000] * 10), sequence=1, timestamp=42.5)
    sample = estimator.sample(chunk)
    assert sample.timestamp == 42.5
    assert sample.value == pytest.approx(96.0)
