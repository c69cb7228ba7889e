"""Noise monitor package: capture, loudness detection, recording and playback."""

from .audio import AudioChunk, AudioStreamError, CaptureConfig, CaptureIntake
from .events import EventBus
from .gain import GainConfig, GainStage
from .loudness import LoudnessConfig, LoudnessEstimator
from .pipeline import NoiseMonitor
from .playback import PlaybackConfig, PlaybackCoordinator
from .recorder import AudioRecorder, RecorderConfig, RecordingError, RecordingSession
from .settings import MonitorSettings, build_settings
from .threshold import Decision, ThresholdConfig, ThresholdStateMachine
