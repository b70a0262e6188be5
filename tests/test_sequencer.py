"""Tests for energy curves and track sequencing."""

import unittest.mock as mock

import pytest

from mixengine.camelot import parse_key
from mixengine.energy_curves import EnergyCurve, parse_curve
from mixengine.exceptions import InsufficientTracksError
from mixengine.models import MixConstraints, MixTrack
from mixengine.sequencer import TrackSequencer, apply_constraints


def _track(name, key, bpm, energy, artist=None, genre=None, mood=None):
    return MixTrack(
        path=f"{name}.wav", bpm=bpm, key=parse_key(key), energy=energy, artist=artist, title=name, genre=genre, mood=mood
    )


def _pool():
    return [
        _track("a", "8A", 124.0, 0.4, artist="Ann"),
        _track("b", "9A", 125.0, 0.5, artist="Bo"),
        _track("c", "9B", 126.0, 0.6, artist="Cy"),
        _track("d", "10A", 126.0, 0.7, artist="Di"),
        _track("e", "3A", 140.0, 0.9, artist="Ed"),
        _track("f", "8B", 123.0, 0.3, artist="Fi"),
    ]


class TestEnergyCurves:
    def test_targets_in_range(self):
        for curve in EnergyCurve:
            for i in range(101):
                assert 0.0 <= curve.target(i / 100) <= 1.0

    def test_build_rises_and_decline_falls(self):
        build = EnergyCurve.BUILD.targets(5)
        decline = EnergyCurve.DECLINE.targets(5)
        assert build == sorted(build)
        assert decline == sorted(decline, reverse=True)
        assert build[0] == pytest.approx(0.3)
        assert build[-1] == pytest.approx(0.9)

    def test_wave_peaks_in_middle(self):
        assert EnergyCurve.WAVE.target(0.5) == pytest.approx(0.9)
        assert EnergyCurve.WAVE.target(0.0) == pytest.approx(0.4)

    def test_parse_curve(self):
        assert parse_curve("double-peak") == EnergyCurve.DOUBLE_PEAK
        assert parse_curve("Late Peak") == EnergyCurve.LATE_PEAK
        assert parse_curve(None) == EnergyCurve.WAVE
        with pytest.raises(ValueError, match="Unknown energy curve"):
            parse_curve("zigzag")


class TestSequencer:
    def setup_method(self):
        self.sequencer = TrackSequencer()

    def test_output_is_permutation(self):
        pool = _pool()
        ordered = self.sequencer.order(pool, "wave")
        assert sorted(t.id for t in ordered) == sorted(t.id for t in pool)

    def test_deterministic(self):
        pool = _pool()
        first = [t.id for t in self.sequencer.order(pool, "build")]
        second = [t.id for t in self.sequencer.order(pool, "build")]
        assert first == second

    def test_shuffle_seed_is_reproducible(self):
        pool = _pool()
        a = [t.id for t in self.sequencer.order(pool, "wave", shuffle_seed=7)]
        b = [t.id for t in self.sequencer.order(pool, "wave", shuffle_seed=7)]
        assert a == b

    def test_harmonic_pair_kept_together(self):
        pool = [
            _track("a", "8A", 128.0, 0.5),
            _track("b", "8B", 129.0, 0.55),
            _track("c", "3A", 140.0, 0.9),
        ]
        ordered = self.sequencer.order(pool, "build")
        keys = [str(t.key) for t in ordered]
        assert keys[-1] == "3A"
        assert set(keys[:2]) == {"8A", "8B"}

    def test_seed_closest_to_first_target(self):
        pool = _pool()
        assert pool[self.sequencer._seed(pool, 0.3)].title == "f"
        assert pool[self.sequencer._seed(pool, 0.9)].title == "e"

    def test_same_artist_not_adjacent(self):
        pool = [
            _track("x1", "8A", 128.0, 0.5, artist="X"),
            _track("x2", "8A", 128.0, 0.5, artist="x "),
            _track("y", "8A", 128.0, 0.5, artist="Y"),
            _track("z", "8A", 128.0, 0.5, artist="Z"),
        ]
        ordered = self.sequencer.order(pool, "steady")
        artists = [t.artist.strip().lower() for t in ordered]
        assert all(a != b for a, b in zip(artists, artists[1:]))

    def test_needs_two_tracks(self):
        with pytest.raises(InsufficientTracksError):
            self.sequencer.order([_track("a", "8A", 128.0, 0.5)])

    def test_two_tracks(self):
        pool = _pool()[:2]
        assert len(self.sequencer.order(pool)) == 2

    def test_constraint_curve_wins(self):
        constraints = MixConstraints(energy_curve="decline")
        with mock.patch("mixengine.sequencer.parse_curve", wraps=parse_curve) as mock_parse:
            self.sequencer.order(_pool(), "build", constraints=constraints)
        assert mock_parse.call_args[0][0] == "decline"

    def test_target_track_count(self):
        ordered = self.sequencer.order(_pool(), "wave", constraints=MixConstraints(target_track_count=3))
        assert len(ordered) == 3


class TestConstraints:
    def test_bpm_range(self):
        kept = apply_constraints(_pool(), MixConstraints(bpm_range=(120, 130)))
        assert "e" not in [t.title for t in kept]
        assert len(kept) == 5

    def test_include_artists(self):
        kept = apply_constraints(_pool(), MixConstraints(include_artists=["ann", "Bo"]))
        assert [t.title for t in kept] == ["a", "b"]

    def test_falls_back_when_too_few_remain(self):
        pool = _pool()
        assert apply_constraints(pool, MixConstraints(bpm_range=(150, 160))) == pool

    def test_energy_range(self):
        kept = apply_constraints(_pool(), MixConstraints(energy_range=(0.45, 0.75)))
        assert [t.title for t in kept] == ["b", "c", "d"]

    def test_moods(self):
        pool = _pool()[:3] + [
            _track("g", "8A", 124.0, 0.5, mood="Dark"),
            _track("h", "9A", 125.0, 0.6, mood="euphoric"),
            _track("i", "9B", 126.0, 0.6, mood="dark "),
        ]
        kept = apply_constraints(pool, MixConstraints(moods=["dark"]))
        # untagged tracks are kept
        assert [t.title for t in kept] == ["a", "b", "c", "g", "i"]
