"""Tests for the pure feature-extraction functions."""

import unittest.mock as mock

import numpy as np
import pytest

from mixengine.camelot import CamelotKey
from mixengine.config import AnalysisConfig, SegmentThresholds
from mixengine.features import (
    compute_energy_curve,
    detect_beats,
    detect_segments,
    downbeats_from,
    estimate_key,
    estimate_tempo,
    find_highlights,
    fold_bpm,
    goertzel_chroma,
    overall_energy,
    select_mix_points,
)
from mixengine.models import SegmentType

RATE = 20.0


def _curve(blocks):
    """Energy curve at RATE Hz from (seconds, level) blocks."""
    return np.concatenate([np.full(int(seconds * RATE), level) for seconds, level in blocks])


# A 300s track: intro, verse, lift, drop, breakdown, second drop, outro
STRUCTURED = [(30, 0.3), (60, 0.5), (30, 0.6), (60, 1.0), (30, 0.2), (60, 0.9), (30, 0.3)]


def _tone(freqs_amps, seconds=10.0, sr=22050):
    t = np.arange(int(seconds * sr)) / sr
    return sum(a * np.sin(2 * np.pi * f * t) for f, a in freqs_amps), sr


class TestEnergy:
    def test_curve_normalized(self):
        y, sr = _tone([(440.0, 0.3)], seconds=5.0)
        curve = compute_energy_curve(y, sr, RATE, 0.1)
        assert curve.max() == pytest.approx(1.0)
        assert curve.min() >= 0.0
        assert len(curve) == pytest.approx(5.0 * RATE, abs=2)

    def test_silence_is_all_zero(self):
        curve = compute_energy_curve(np.zeros(22050 * 2), 22050, RATE, 0.1)
        assert not curve.any()

    def test_overall_energy_range(self):
        assert overall_energy(np.zeros(100)) == 1
        assert overall_energy(np.ones(100)) == 10
        assert overall_energy([]) == 1


class TestTempo:
    def setup_method(self):
        self.config = AnalysisConfig()

    def test_fold_bpm(self):
        assert fold_bpm(64) == 128
        assert fold_bpm(200) == 100.0
        assert fold_bpm(120) == 120
        assert 85 <= fold_bpm(40) <= 175

    def test_pulse_train_120_bpm(self):
        rate = 100
        envelope = np.zeros(rate * 120)
        envelope[::50] = 1.0  # one pulse every 0.5s
        bpm, confidence = estimate_tempo(envelope, rate, self.config)
        assert bpm == pytest.approx(120.0, abs=1.0)
        assert confidence > 0.8

    def test_slow_pulse_folds_into_range(self):
        rate = 100
        envelope = np.zeros(rate * 120)
        envelope[::92] = 1.0  # ~65 BPM
        bpm, _ = estimate_tempo(envelope, rate, self.config)
        assert 85 <= bpm <= 175

    def test_flat_envelope_falls_back(self):
        assert estimate_tempo(np.ones(100 * 120), 100, self.config) == (120.0, 0.0)

    def test_short_envelope_falls_back(self):
        assert estimate_tempo(np.random.rand(100 * 5), 100, self.config) == (120.0, 0.0)


class TestBeats:
    def test_grid_fallback_when_tracker_finds_too_few(self):
        with mock.patch("librosa.beat.beat_track") as mock_beat:
            mock_beat.return_value = (120.0, np.array([]))
            beats = detect_beats(np.zeros(22050 * 60), 22050, 120.0, 60.0)
        assert len(beats) == 120
        assert np.allclose(np.diff(beats), 0.5)

    def test_tracked_beats_kept(self):
        tracked = np.arange(0.2, 59.0, 0.5)
        with mock.patch("librosa.beat.beat_track") as mock_beat:
            mock_beat.return_value = (120.0, tracked)
            beats = detect_beats(np.zeros(22050 * 60), 22050, 120.0, 60.0)
        assert np.allclose(beats, tracked)

    def test_downbeats_every_fourth(self):
        beats = np.arange(0, 10, 0.5)
        assert list(downbeats_from(beats)) == [0.0, 2.0, 4.0, 6.0, 8.0]


class TestKey:
    def test_c_major_triad(self):
        y, sr = _tone([(261.6256, 1.0), (329.6276, 1.0), (391.9954, 1.0)])
        key, name, confidence = estimate_key(goertzel_chroma(y, sr))
        assert key == CamelotKey(8, "B")
        assert name == "C"
        assert 0 < confidence <= 1

    def test_a_minor_chord(self):
        y, sr = _tone([(220.0, 1.0), (261.6256, 0.8), (329.6276, 0.5)])
        key, name, _ = estimate_key(goertzel_chroma(y, sr))
        assert key == CamelotKey(8, "A")
        assert name == "Am"

    def test_chroma_sums_to_one(self):
        y, sr = _tone([(440.0, 1.0)], seconds=3.0)
        chroma = goertzel_chroma(y, sr)
        assert chroma.sum() == pytest.approx(1.0)
        assert int(np.argmax(chroma)) == 9  # A

    def test_silence_has_no_key(self):
        assert estimate_key(goertzel_chroma(np.zeros(22050 * 3), 22050)) is None


class TestSegments:
    def setup_method(self):
        self.thresholds = SegmentThresholds()
        self.config = AnalysisConfig()

    def test_partition_covers_track(self):
        beats = np.arange(0, 300, 0.5)
        segments = detect_segments(_curve(STRUCTURED), RATE, 300.0, beats, self.thresholds)
        assert segments[0].start_time == 0.0
        assert segments[-1].end_time == pytest.approx(300.0)
        for a, b in zip(segments, segments[1:]):
            assert a.end_time == pytest.approx(b.start_time)
            assert a.type != b.type
        assert sum(s.beat_count for s in segments) == len(beats)

    def test_structure_detected(self):
        segments = detect_segments(_curve(STRUCTURED), RATE, 300.0, [], self.thresholds)
        types = [s.type for s in segments]
        assert types[0] == SegmentType.INTRO
        assert types[-1] == SegmentType.OUTRO
        assert SegmentType.DROP in types
        assert SegmentType.BREAKDOWN in types

    def test_flat_track_has_no_drop_or_breakdown(self):
        segments = detect_segments(np.full(int(300 * RATE), 0.5), RATE, 300.0, [], self.thresholds)
        assert len(segments) == 1
        assert segments[0].type == SegmentType.VERSE
        assert (segments[0].start_time, segments[0].end_time) == (0.0, 300.0)

    def test_too_short_is_unknown(self):
        segments = detect_segments(np.full(int(8 * RATE), 0.5), RATE, 8.0, [], self.thresholds)
        assert [s.type for s in segments] == [SegmentType.UNKNOWN]

    def test_mix_points(self):
        curve = _curve(STRUCTURED)
        segments = detect_segments(curve, RATE, 300.0, [], self.thresholds)
        mix_in, mix_out = select_mix_points(segments, curve, RATE, 300.0, self.config)
        assert 28.0 <= mix_in <= 32.0
        assert 210.0 <= mix_out < 300.0

    def test_mix_points_on_flat_track(self):
        curve = np.full(int(300 * RATE), 0.5)
        segments = detect_segments(curve, RATE, 300.0, [], self.thresholds)
        mix_in, mix_out = select_mix_points(segments, curve, RATE, 300.0, self.config)
        assert mix_in == 0.0
        assert mix_out == pytest.approx(291.0)

    def test_highlights(self):
        segments = detect_segments(_curve(STRUCTURED), RATE, 300.0, [], self.thresholds)
        drop_point, breakdown_point = find_highlights(segments, 300.0)
        assert drop_point == pytest.approx(120.0)
        assert breakdown_point == pytest.approx(180.0)
