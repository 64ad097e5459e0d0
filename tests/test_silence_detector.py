"""Tests for the dB/EMA silence detector."""

import math

import pytest

from presstalk.audio.input.silence import SILENCE_FLOOR_DB, SilenceVoiceActivityDetector
from presstalk.audio.input.types import SilenceDetectorConfig


def feed(detector, dbs, frame_ms=90.0, start_ms=0.0):
    """Ingest `dbs` one frame apart; elapsed time is the frame's start offset."""
    results = []
    for i, db in enumerate(dbs):
        results.append(detector.ingest(db, frame_ms, start_ms + i * frame_ms))
    return results


class TestEma:
    def test_first_sample_seeds_average(self):
        detector = SilenceVoiceActivityDetector()
        _, info = detector.ingest(-60.0, 90, 0)
        assert info.db_ema == -60.0
        assert detector.state.initialized

    def test_average_is_smoothed(self):
        detector = SilenceVoiceActivityDetector(SilenceDetectorConfig(ema_alpha=0.2))
        detector.ingest(-60.0, 90, 0)
        _, info = detector.ingest(0.0, 90, 90)
        assert info.db_ema == pytest.approx(-48.0)

    def test_single_click_is_not_speech(self):
        detector = SilenceVoiceActivityDetector(SilenceDetectorConfig(ema_alpha=0.2, speech_activate_db=-32))
        feed(detector, [-60.0, 0.0, -60.0])
        assert not detector.state.has_spoken

    def test_sustained_speech_is_detected(self):
        detector = SilenceVoiceActivityDetector(SilenceDetectorConfig(ema_alpha=0.2, speech_activate_db=-32))
        feed(detector, [-60.0] + [-10.0] * 10)
        assert detector.state.has_spoken

    def test_alpha_is_clamped(self):
        detector = SilenceVoiceActivityDetector(SilenceDetectorConfig(ema_alpha=0.0))
        detector.ingest(-60.0, 90, 0)
        _, info = detector.ingest(0.0, 90, 90)
        # 0 is clamped up to 0.01 so the average still moves.
        assert info.db_ema == pytest.approx(-59.4)

    def test_nan_and_minus_infinity_count_as_floor(self):
        detector = SilenceVoiceActivityDetector()
        _, info = detector.ingest(float("nan"), 90, 0)
        assert info.db_instant == SILENCE_FLOOR_DB
        _, info = detector.ingest(-math.inf, 90, 90)
        assert info.db_instant == SILENCE_FLOOR_DB


class TestAutoStop:
    @pytest.fixture
    def exact_config(self):
        """No smoothing, so every frame's level is exactly what was fed."""
        return SilenceDetectorConfig(
            silence_threshold_db=-45.0,
            silence_duration_ms=900.0,
            start_guard_ms=300.0,
            require_speech_before_auto_stop=True,
            speech_activate_db=-32.0,
            ema_alpha=1.0,
        )

    def test_never_stops_without_speech_when_required(self):
        detector = SilenceVoiceActivityDetector(SilenceDetectorConfig(require_speech_before_auto_stop=True))
        for should_stop, info in feed(detector, [-33.0, -50.0, -80.0, -120.0] * 100):
            assert not should_stop
            assert info.silence_accum_ms == 0.0
            assert not info.has_spoken

    def test_stops_without_speech_when_not_required(self):
        cfg = SilenceDetectorConfig(require_speech_before_auto_stop=False, silence_duration_ms=900, start_guard_ms=0)
        detector = SilenceVoiceActivityDetector(cfg)
        results = feed(detector, [-80.0] * 12)
        assert any(stop for stop, _ in results)

    def test_guard_keeps_accumulator_at_zero(self, exact_config):
        detector = SilenceVoiceActivityDetector(exact_config)
        # Speech then silence, all inside the 300 ms guard.
        results = feed(detector, [-10.0, -80.0, -80.0, -80.0], frame_ms=70.0)
        for should_stop, info in results:
            assert info.recording_elapsed_ms < exact_config.start_guard_ms
            assert info.silence_accum_ms == 0.0
            assert not should_stop

    def test_constant_level_just_below_threshold_stops_at_duration(self):
        cfg = SilenceDetectorConfig(
            silence_threshold_db=-45.0,
            silence_duration_ms=1000.0,
            start_guard_ms=300.0,
            require_speech_before_auto_stop=False,
            ema_alpha=0.2,
        )
        detector = SilenceVoiceActivityDetector(cfg)
        results = feed(detector, [-45.5] * 20, frame_ms=90.0)

        # Frames at elapsed 0..270 ms are inside the guard; counting starts at 360 ms.
        first_stop = next(i for i, (stop, _) in enumerate(results) if stop)
        assert first_stop == 15
        assert results[first_stop][1].silence_accum_ms == pytest.approx(1080.0)
        assert results[first_stop - 1][1].silence_accum_ms == pytest.approx(990.0)
        assert all(not stop for stop, _ in results[:first_stop])

    def test_stops_after_speech_then_exact_silence(self, exact_config):
        detector = SilenceVoiceActivityDetector(exact_config)
        results = feed(detector, [-20.0] * 5 + [-46.0] * 12, frame_ms=100.0)
        stops = [i for i, (stop, _) in enumerate(results) if stop]
        # Silence starts at frame 5; 9 frames of 100 ms reach 900 ms at frame 13.
        assert stops[0] == 13
        assert results[12][1].silence_accum_ms == pytest.approx(800.0)

    def test_loud_frame_resets_silence_run(self, exact_config):
        detector = SilenceVoiceActivityDetector(exact_config)
        feed(detector, [-20.0] * 4 + [-60.0] * 5, frame_ms=100.0)
        assert detector.state.silence_accum_ms == pytest.approx(500.0)

        should_stop, info = detector.ingest(-40.0, 100.0, 1000.0)
        assert not should_stop
        assert info.silence_accum_ms == 0.0

    def test_threshold_itself_is_not_silence(self, exact_config):
        detector = SilenceVoiceActivityDetector(exact_config)
        feed(detector, [-20.0] * 4, frame_ms=100.0)
        _, info = detector.ingest(-45.0, 100.0, 500.0)
        assert info.silence_accum_ms == 0.0

    def test_has_spoken_never_resets_within_session(self, exact_config):
        detector = SilenceVoiceActivityDetector(exact_config)
        feed(detector, [-10.0] + [-120.0] * 30)
        assert detector.state.has_spoken


class TestConfigurationLifecycle:
    def test_update_config_keeps_accumulated_state(self):
        cfg = SilenceDetectorConfig(require_speech_before_auto_stop=False, start_guard_ms=0, ema_alpha=1.0)
        detector = SilenceVoiceActivityDetector(cfg)
        feed(detector, [-80.0] * 5, frame_ms=100.0)
        assert detector.state.silence_accum_ms == pytest.approx(500.0)

        detector.update_config(SilenceDetectorConfig(
            require_speech_before_auto_stop=False, start_guard_ms=0, ema_alpha=1.0, silence_duration_ms=600.0
        ))
        should_stop, info = detector.ingest(-80.0, 100.0, 500.0)
        assert info.silence_accum_ms == pytest.approx(600.0)
        assert should_stop

    def test_reset_clears_state(self):
        detector = SilenceVoiceActivityDetector(SilenceDetectorConfig(ema_alpha=1.0))
        feed(detector, [-10.0, -80.0, -80.0, -80.0, -80.0, -80.0])
        detector.reset()
        state = detector.state
        assert state.ema_db == SILENCE_FLOOR_DB
        assert not state.initialized
        assert not state.has_spoken
        assert state.silence_accum_ms == 0.0

    def test_reset_with_new_config(self):
        detector = SilenceVoiceActivityDetector()
        new_cfg = SilenceDetectorConfig(silence_threshold_db=-50.0)
        detector.reset(new_cfg)
        assert detector.config is new_cfg

    def test_state_is_a_snapshot(self):
        detector = SilenceVoiceActivityDetector()
        snapshot = detector.state
        detector.ingest(-10.0, 90, 0)
        assert not snapshot.initialized
