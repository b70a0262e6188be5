"""Tests for mix plan assembly."""

import unittest.mock as mock

import numpy as np
import pytest

from mixengine.analyzer import AudioAnalyzer
from mixengine.camelot import parse_key
from mixengine.config import EngineConfig
from mixengine.exceptions import AudioTooShortError, InsufficientTracksError
from mixengine.models import (
    MixConstraints,
    MixTrack,
    Segment,
    SegmentType,
    TrackAnalysis,
    Transition,
    TransitionType,
)
from mixengine.planner import MixPlanner, planned_duration


def _analysis(duration=200.0, bpm=128.0, key="8A", energy=6):
    beats = [float(b) for b in np.arange(0, duration, 60.0 / bpm)]
    return TrackAnalysis(
        duration=duration,
        bpm=bpm,
        bpm_confidence=0.9,
        key=parse_key(key),
        key_name="",
        key_confidence=0.8,
        energy=energy,
        energy_curve=[energy / 10.0] * int(duration * 20),
        energy_rate=20.0,
        beats=beats,
        downbeats=beats[::4],
        segments=[Segment(0.0, duration, SegmentType.VERSE, energy / 10.0)],
        mix_in_point=16.0,
        mix_out_point=duration - 30.0,
    )


def _pool():
    specs = [("a", "8A", 124.0, 4), ("b", "9A", 125.0, 5), ("c", "9B", 126.0, 7), ("d", "10A", 127.0, 9)]
    return [MixTrack.from_analysis(f"{name}.wav", _analysis(bpm=bpm, key=key, energy=e), title=name)
            for name, key, bpm, e in specs]


class TestPlannedDuration:
    def test_two_track_crossfade(self):
        a = MixTrack.from_analysis("a.wav", _analysis())
        b = MixTrack.from_analysis("b.wav", _analysis())
        transition = Transition(a.id, b.id, TransitionType.CROSSFADE, 8.0, 170.0, 10.0)
        assert planned_duration([a, b], [transition], EngineConfig()) == pytest.approx(368.0)

    def test_drop_adds_gap(self):
        a = MixTrack.from_analysis("a.wav", _analysis())
        b = MixTrack.from_analysis("b.wav", _analysis())
        transition = Transition(a.id, b.id, TransitionType.DROP, 4.0, 170.0, 10.0)
        # Cut 0.5s after the mix-out point, 0.1s of silence, then the incoming track from its mix-in point
        assert planned_duration([a, b], [transition], EngineConfig()) == pytest.approx(170.6 + 190.0)

    def test_empty(self):
        assert planned_duration([], [], EngineConfig()) == 0.0


class TestMixPlanner:
    def setup_method(self):
        self.planner = MixPlanner(analyzer=mock.Mock(spec=AudioAnalyzer))

    def test_build_plan(self):
        pool = _pool()
        plan = self.planner.build_plan(pool, curve="build")
        assert sorted(t.id for t in plan.tracks) == sorted(t.id for t in pool)
        assert len(plan.transitions) == len(pool) - 1
        for t, a, b in zip(plan.transitions, plan.tracks, plan.tracks[1:]):
            assert (t.from_track_id, t.to_track_id) == (a.id, b.id)
        assert plan.total_duration == planned_duration(plan.tracks, plan.transitions, self.planner.config)
        assert plan.energy_arc == [round(t.norm_energy, 3) for t in plan.tracks]
        assert plan.curve == "build"
        assert 0 < plan.avg_score <= 100

    def test_keep_given_order(self):
        pool = _pool()[::-1]
        plan = self.planner.build_plan(pool, curve="build", sequence=False)
        assert [t.id for t in plan.tracks] == [t.id for t in pool]
        assert plan.curve is None

    def test_transitions_follow_stretched_tempo(self):
        pool = [
            MixTrack.from_analysis(f"{name}.wav", _analysis(bpm=bpm), title=name)
            for name, bpm in (("a", 128.0), ("b", 124.0), ("c", 124.0))
        ]
        plan = self.planner.build_plan(pool, sequence=False)
        assert [t.bpm_adjustment for t in plan.transitions] == [pytest.approx(3.226), pytest.approx(3.226)]

    def test_constraint_curve_wins(self):
        plan = self.planner.build_plan(_pool(), curve="build", constraints=MixConstraints(energy_curve="decline"))
        assert plan.curve == "decline"

    def test_default_curve(self):
        assert self.planner.build_plan(_pool()).curve == "wave"

    def test_needs_two_tracks(self):
        with pytest.raises(InsufficientTracksError):
            self.planner.build_plan(_pool()[:1])

    def test_reorder(self):
        plan = self.planner.build_plan(_pool(), sequence=False)
        reordered = self.planner.reorder(plan, [3, 2, 1, 0])
        assert reordered.id == plan.id
        assert [t.id for t in reordered.tracks] == [t.id for t in plan.tracks[::-1]]
        assert reordered.transitions[0].from_track_id == plan.tracks[3].id

    def test_reorder_rejects_non_permutation(self):
        plan = self.planner.build_plan(_pool(), sequence=False)
        with pytest.raises(ValueError, match="permutation"):
            self.planner.reorder(plan, [0, 0, 1, 2])
        with pytest.raises(ValueError):
            self.planner.reorder(plan, [0, 1, 2])

    def test_analyze_tracks_uses_metadata(self):
        self.planner.analyzer.analyze_many.return_value = (
            {"a.wav": _analysis()},
            {"b.wav": AudioTooShortError("Audio file too short", "b.wav")},
        )
        tracks, failures = self.planner.analyze_tracks(
            ["a.wav", "b.wav"], metadata={"a.wav": {"artist": "Ann", "title": "One", "bpm": 124.0}}
        )
        _, kwargs = self.planner.analyzer.analyze_many.call_args
        assert kwargs["trusted_bpms"] == {"a.wav": 124.0}
        assert len(tracks) == 1
        assert tracks[0].display_name == "Ann - One"
        assert tracks[0].energy == pytest.approx(0.6)
        assert list(failures) == ["b.wav"]
