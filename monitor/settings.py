"""Builds component configs from the YAML configuration mapping."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict

from .audio import CaptureConfig
from .gain import GainConfig
from .loudness import LoudnessConfig, parse_voice_range
from .playback import PlaybackConfig, parse_play_duration
from .recorder import RecorderConfig
from .threshold import ThresholdConfig


@dataclass
class MonitorSettings:
    capture: CaptureConfig = field(default_factory=CaptureConfig)
    loudness: LoudnessConfig = field(default_factory=LoudnessConfig)
    threshold: ThresholdConfig = field(default_factory=ThresholdConfig)
    recorder: RecorderConfig = field(default_factory=RecorderConfig)
    playback: PlaybackConfig = field(default_factory=PlaybackConfig)


def build_settings(config: Dict[str, Any]) -> MonitorSettings:
    audio_cfg = config.get("audio", {}) or {}
    detection_cfg = config.get("detection", {}) or {}
    recording_cfg = config.get("recording", {}) or {}
    playback_cfg = config.get("playback", {}) or {}
    voice_cfg = detection_cfg.get("voice_filter", {}) or {}

    capture = CaptureConfig(
        sample_rate=int(audio_cfg.get("sample_rate", 16000)),
        channels=int(audio_cfg.get("channels", 1)),
        device_id=audio_cfg.get("mic_device_index"),
        high_water_mark=int(audio_cfg.get("high_water_mark", 4096)),
        max_queue_depth=int(audio_cfg.get("max_queue_depth", 64)),
    )

    loudness = LoudnessConfig(
        use_fast_decibel=bool(detection_cfg.get("use_fast_decibel", True)),
        enable_a_weighting=bool(detection_cfg.get("enable_a_weighting", False)),
        enable_voice_filter=bool(voice_cfg.get("enabled", False)),
        voice_frequency_range=parse_voice_range(voice_cfg),
    )

    threshold = ThresholdConfig(
        threshold=float(detection_cfg.get("threshold", 65)),
        delay_before_record=float(detection_cfg.get("delay_before_record", 2)),
        keep_recording_after_silence=float(detection_cfg.get("keep_recording_after_silence", 10)),
        max_record_duration=float(detection_cfg.get("max_record_duration", 10800)),
    )

    recorder = RecorderConfig(
        out_dir=Path(recording_cfg.get("out_dir", "recordings")),
        sample_rate=capture.sample_rate,
        channels=capture.channels,
    )

    playback = PlaybackConfig(
        play_delay=float(playback_cfg.get("play_delay", 3)),
        play_duration=parse_play_duration(playback_cfg.get("play_duration", "full")),
        resume_detection_delay=float(playback_cfg.get("resume_detection_delay", 2)),
        pause_detection_during_playback=bool(playback_cfg.get("pause_detection_during_playback", True)),
        temp_dir=Path(playback_cfg.get("temp_dir", "temp")),
        gain=GainConfig(
            gain_factor=float(playback_cfg.get("gain_factor", 901)),
            noise_gate_threshold=float(playback_cfg.get("noise_gate_threshold", 1000)),
            noise_gate_ratio=float(playback_cfg.get("noise_gate_ratio", 0.1)),
        ),
    )

    return MonitorSettings(
        capture=capture,
        loudness=loudness,
        threshold=threshold,
        recorder=recorder,
        playback=playback,
    )
