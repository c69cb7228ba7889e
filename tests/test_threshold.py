from monitor.loudness import DecibelSample
from monitor.threshold import Decision, ThresholdConfig, ThresholdStateMachine

STEP = 0.25


def feed(machine, values, start=0.0, step=STEP):
    """Feed values at evenly spaced timestamps; return (timestamp, decision) pairs."""
    decisions = []
    for index, value in enumerate(values):
        ts = start + index * step
        decision = machine.update(DecibelSample(value=value, timestamp=ts))
        if decision is not None:
            decisions.append((ts, decision))
    return decisions


def make(threshold=65.0, delay=2.0, hold=2.0, max_duration=10800.0):
    return ThresholdStateMachine(
        ThresholdConfig(
            threshold=threshold,
            delay_before_record=delay,
            keep_recording_after_silence=hold,
            max_record_duration=max_duration,
        )
    )


def test_constant_level_below_threshold_never_starts():
    machine = make()
    assert feed(machine, [64.9] * 400) == []
    assert machine.state.is_recording is False


def test_start_fires_once_at_delay_boundary():
    machine = make(delay=2.0)
    decisions = feed(machine, [80.0] * 40)
    assert decisions == [(2.0, Decision.START_RECORDING)]
    assert machine.state.is_recording is True


def test_threshold_comparison_is_inclusive():
    machine = make(delay=0.0)
    assert feed(machine, [65.0]) == [(0.0, Decision.START_RECORDING)]


def test_stop_fires_once_after_silence_hold():
    machine = make(delay=0.0, hold=2.0)
    values = [80.0] * 4 + [10.0] * 20
    decisions = feed(machine, values)
    assert decisions == [
        (0.0, Decision.START_RECORDING),
        (3.0, Decision.STOP_RECORDING),
    ]
    assert machine.state.is_recording is False


def test_brief_dip_does_not_stop_recording():
    machine = make(delay=0.0, hold=2.0)
    values = [80.0] * 4 + [10.0] * 4 + [80.0] * 4 + [10.0] * 4
    decisions = feed(machine, values)
    assert [d for _, d in decisions] == [Decision.START_RECORDING]


def test_level_change_resets_above_timer():
    machine = make(delay=2.0)
    values = [80.0] * 6 + [10.0] + [80.0] * 10
    decisions = feed(machine, values)
    # Second run of loud samples starts at 1.75 s; start fires 2 s later.
    assert decisions == [(3.75, Decision.START_RECORDING)]


def test_pause_does_not_reset_elapsed_above_time():
    machine = make(delay=3.0)
    assert feed(machine, [80.0] * 5) == []  # 0.0 .. 1.0 s above
    assert machine.state.above_since == 0.0

    machine.pause()
    # Paused samples update the display level but are not evaluated.
    assert machine.update(DecibelSample(value=90.0, timestamp=1.5)) is None
    assert machine.update(DecibelSample(value=20.0, timestamp=2.0)) is None
    assert machine.current_decibel == 20.0
    assert machine.state.above_since == 0.0
    assert machine.state.is_above_threshold is True

    machine.resume()
    assert machine.update(DecibelSample(value=80.0, timestamp=2.5)) is None
    assert machine.update(DecibelSample(value=80.0, timestamp=3.0)) is Decision.START_RECORDING


def test_paused_machine_never_decides_even_past_delay():
    machine = make(delay=1.0)
    machine.pause()
    assert feed(machine, [90.0] * 40) == []
    assert machine.state.is_recording is False


def test_peak_tracks_recording_and_continues_while_paused():
    machine = make(delay=0.0)
    feed(machine, [70.0, 75.0, 72.0])
    assert machine.peak_decibel == 75.0

    machine.pause()
    machine.update(DecibelSample(value=88.0, timestamp=10.0))
    assert machine.peak_decibel == 88.0
    assert machine.current_decibel == 88.0


def test_peak_resets_on_new_recording():
    machine = make(delay=0.0, hold=0.5)
    feed(machine, [90.0, 10.0, 10.0, 10.0])
    assert machine.state.is_recording is False
    feed(machine, [70.0], start=5.0)
    assert machine.state.is_recording is True
    assert machine.peak_decibel == 70.0


def test_max_record_duration_splits_long_recordings():
    machine = make(delay=0.0, max_duration=2.0)
    decisions = feed(machine, [80.0] * 10)
    assert decisions == [
        (0.0, Decision.START_RECORDING),
        (2.0, Decision.STOP_RECORDING),
        (2.25, Decision.START_RECORDING),
    ]


def test_force_stop_emits_once():
    machine = make(delay=0.0)
    feed(machine, [80.0])
    assert machine.force_stop() is Decision.STOP_RECORDING
    assert machine.force_stop() is None


def test_abort_rolls_back_recording_state():
    machine = make(delay=0.0)
    feed(machine, [80.0])
    machine.abort()
    assert machine.state.is_recording is False
    # Still above threshold, so the next sample may start again.
    assert machine.update(DecibelSample(value=80.0, timestamp=0.25)) is Decision.START_RECORDING


def test_reset_clears_state():
    machine = make(delay=0.0)
    feed(machine, [80.0])
    machine.pause()
    machine.reset()
    assert machine.state.is_recording is False
    assert machine.state.above_since is None
    assert machine.paused is False
    assert machine.peak_decibel == 0.0
