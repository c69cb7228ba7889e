#!/usr/bin/env python3
"""Display real-time decibel readings to help tune the detection threshold."""

import time

SAMPLE_RATE = 16000
DURATION = 0.25  # Check every 0.25 seconds
THRESHOLD = 65.0


def main():
    import sounddevice as sd

    from monitor.loudness import LoudnessConfig, LoudnessEstimator

    fast = LoudnessEstimator(LoudnessConfig(use_fast_decibel=True), SAMPLE_RATE)
    standard = LoudnessEstimator(LoudnessConfig(use_fast_decibel=False), SAMPLE_RATE)
    weighted = LoudnessEstimator(LoudnessConfig(enable_a_weighting=True), SAMPLE_RATE)

    print("🎤 Real-time Decibel Monitor")
    print("=" * 60)
    print(f"Threshold: {THRESHOLD:.0f} dB (fast estimator)")
    print("\nPress Ctrl+C to stop\n")

    try:
        while True:
            audio = sd.rec(
                int(DURATION * SAMPLE_RATE),
                samplerate=SAMPLE_RATE,
                channels=1,
                dtype="int16",
            )
            sd.wait()
            data = audio.tobytes()

            fast_db = fast.measure(data)
            status = "🔴 ABOVE" if fast_db >= THRESHOLD else "⚪ below"
            print(
                f"{status} | fast: {fast_db:5.1f} dB | standard: {standard.measure(data):5.1f} dB | "
                f"A-weighted: {weighted.measure(data):5.1f} dB"
            )

            time.sleep(0.05)

    except KeyboardInterrupt:
        print("\n\n👋 Stopped")


if __name__ == "__main__":
    main()
