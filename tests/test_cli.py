import json
import unittest.mock as mock

import numpy as np
import pytest
from click.testing import CliRunner

from mixengine.camelot import parse_key
from mixengine.cli import cli, format_time
from mixengine.exceptions import AudioLoadError, AudioTooShortError, InsufficientTracksError
from mixengine.models import MixResult, MixTrack, OutputFormat, Quality, Segment, SegmentType, TrackAnalysis
from mixengine.planner import MixPlanner


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def audio_files(tmp_path):
    paths = []
    for name in ("one.wav", "two.wav"):
        path = tmp_path / name
        path.write_bytes(b"RIFF")
        paths.append(str(path))
    return paths


def _analysis(bpm=128.0, key="8A", key_name="Am", duration=240.0):
    beats = [float(b) for b in np.arange(0, duration, 60.0 / bpm)]
    return TrackAnalysis(
        duration=duration,
        bpm=bpm,
        bpm_confidence=0.92,
        key=parse_key(key),
        key_name=key_name,
        key_confidence=0.71,
        energy=7,
        energy_curve=[0.7] * int(duration * 20),
        energy_rate=20.0,
        beats=beats,
        downbeats=beats[::4],
        segments=[
            Segment(0.0, 32.0, SegmentType.INTRO, 0.3),
            Segment(32.0, 208.0, SegmentType.DROP, 0.9),
            Segment(208.0, duration, SegmentType.OUTRO, 0.3),
        ],
        mix_in_point=32.0,
        mix_out_point=208.0,
    )


def _plan(sequence=True):
    tracks = [
        MixTrack.from_analysis("one.wav", _analysis(), title="one"),
        MixTrack.from_analysis("two.wav", _analysis(bpm=126.0, key="9A"), title="two"),
    ]
    return MixPlanner(analyzer=mock.Mock()).build_plan(tracks, curve="build", sequence=sequence)


def test_format_time():
    assert format_time(125.3) == "2:05.3"
    assert format_time(0) == "0:00.0"
    assert format_time(None) == "N/A"


def test_analyze_missing_file(runner):
    result = runner.invoke(cli, ["analyze", "nonexistent.mp3"])
    assert result.exit_code == 1
    assert "Error: Unable to load audio file: nonexistent.mp3" in result.output


def test_analyze_requires_files(runner):
    result = runner.invoke(cli, ["analyze"])
    assert result.exit_code != 0
    assert "Missing argument" in result.output


def test_analyze_text_output(runner, audio_files):
    with mock.patch("mixengine.cli.AudioAnalyzer") as mock_cls:
        mock_cls.return_value.analyze.return_value = _analysis()
        result = runner.invoke(cli, ["analyze", audio_files[0]])
    assert result.exit_code == 0
    assert f"Analyzing: {audio_files[0]}" in result.output
    assert "BPM: 128.0 (confidence: 0.92)" in result.output
    assert "Key: 8A (Am) (confidence: 0.71)" in result.output
    assert "Energy: 7/10" in result.output
    assert "Mix-in point: 0:32.0" in result.output
    assert "Mix-out point: 3:28.0" in result.output
    assert "Segments: intro@0:00.0, drop@0:32.0, outro@3:28.0" in result.output


def test_analyze_json_single(runner, audio_files):
    with mock.patch("mixengine.cli.AudioAnalyzer") as mock_cls:
        mock_cls.return_value.analyze.return_value = _analysis()
        result = runner.invoke(cli, ["analyze", audio_files[0], "--format", "json"])
    assert result.exit_code == 0
    data = json.loads(result.output)
    assert data["file"] == audio_files[0]
    assert data["bpm"] == 128.0
    assert data["key"] == "8A"
    assert data["key_name"] == "Am"
    assert [s["type"] for s in data["segments"]] == ["intro", "drop", "outro"]


def test_analyze_json_multiple_with_warning(runner, audio_files):
    with mock.patch("mixengine.cli.AudioAnalyzer") as mock_cls:
        mock_cls.return_value.analyze.side_effect = [
            _analysis(),
            AudioTooShortError("Audio file too short for analysis", audio_files[1]),
        ]
        result = runner.invoke(cli, ["analyze", *audio_files, "--format", "json"])
    assert result.exit_code == 0
    data = json.loads(result.output)
    assert len(data["tracks"]) == 2
    assert data["tracks"][1] == {"file": audio_files[1], "warning": "Audio file too short for analysis"}


def test_analyze_short_file_warns(runner, audio_files):
    with mock.patch("mixengine.cli.AudioAnalyzer") as mock_cls:
        mock_cls.return_value.analyze.side_effect = AudioTooShortError("Audio file too short for analysis")
        result = runner.invoke(cli, ["analyze", audio_files[0]])
    assert result.exit_code == 0
    assert "too short" in result.output


def test_analyze_unreadable_file(runner, audio_files):
    with mock.patch("mixengine.cli.AudioAnalyzer") as mock_cls:
        mock_cls.return_value.analyze.side_effect = AudioLoadError(f"Unable to load audio file: {audio_files[0]}")
        result = runner.invoke(cli, ["analyze", audio_files[0]])
    assert result.exit_code == 1
    assert "Error: Unable to load audio file" in result.output


def test_compatible_pairs_shown(runner, audio_files):
    with mock.patch("mixengine.cli.AudioAnalyzer") as mock_cls:
        mock_cls.return_value.analyze.side_effect = [_analysis(), _analysis(bpm=126.0, key="9A", key_name="Em")]
        result = runner.invoke(cli, ["analyze", *audio_files])
    assert result.exit_code == 0
    assert "Compatible pairs:" in result.output
    assert f"✓ {audio_files[0]} → {audio_files[1]} (key: adjacent, tempo: -2.0 BPM)" in result.output


def test_no_compatible_pairs(runner, audio_files):
    with mock.patch("mixengine.cli.AudioAnalyzer") as mock_cls:
        mock_cls.return_value.analyze.side_effect = [_analysis(), _analysis(bpm=140.0, key="3A", key_name="Bbm")]
        result = runner.invoke(cli, ["analyze", *audio_files])
    assert result.exit_code == 0
    assert "No compatible mix pairs found" in result.output


def test_plan_json(runner):
    plan = _plan()
    with mock.patch("mixengine.cli.MixPlanner") as mock_cls:
        mock_cls.return_value.analyze_tracks.return_value = (plan.tracks, {})
        mock_cls.return_value.build_plan.return_value = plan
        result = runner.invoke(cli, ["plan", "one.wav", "two.wav", "--curve", "build", "--format", "json"])
    assert result.exit_code == 0
    data = json.loads(result.output)
    assert data["id"] == plan.id
    assert data["curve"] == "build"
    assert len(data["tracks"]) == 2
    assert len(data["transitions"]) == 1
    assert 0 <= data["transitions"][0]["mix_quality"] <= 100
    assert mock_cls.return_value.build_plan.call_args[1] == {"curve": "build", "sequence": True}


def test_plan_text_with_arc(runner):
    plan = _plan()
    with mock.patch("mixengine.cli.MixPlanner") as mock_cls:
        mock_cls.return_value.analyze_tracks.return_value = (plan.tracks, {"bad.wav": AudioLoadError("unreadable")})
        mock_cls.return_value.build_plan.return_value = plan
        result = runner.invoke(cli, ["plan", "one.wav", "two.wav", "bad.wav", "--show-arc"])
    assert result.exit_code == 0
    assert "Skipping bad.wav: unreadable" in result.output
    assert "Mix plan: 2 tracks" in result.output
    assert "Energy arc (build)" in result.output


def test_plan_too_few_tracks(runner):
    with mock.patch("mixengine.cli.MixPlanner") as mock_cls:
        mock_cls.return_value.analyze_tracks.return_value = ([], {})
        mock_cls.return_value.build_plan.side_effect = InsufficientTracksError("Need at least 2 tracks for a mix, got 0")
        result = runner.invoke(cli, ["plan", "one.wav"])
    assert result.exit_code == 1
    assert "Error: Need at least 2 tracks" in result.output


def test_render_success(runner, tmp_path):
    plan = _plan(sequence=False)
    output = str(tmp_path / "mix.flac")
    rendered = MixResult(
        success=True,
        output_path=output,
        duration=368.0,
        transition_count=1,
        avg_transition_score=96.5,
        harmonic_mix_percentage=100.0,
        degradations=["Transition 1 (one -> two) fell back to a cut: timed out"],
    )
    with mock.patch("mixengine.cli.MixPlanner") as mock_planner, mock.patch("mixengine.cli.MixRenderer") as mock_renderer:
        mock_planner.return_value.analyze_tracks.return_value = (plan.tracks, {})
        mock_planner.return_value.build_plan.return_value = plan
        mock_renderer.return_value.render.return_value = rendered
        result = runner.invoke(cli, ["render", "one.wav", "two.wav", "-o", output, "--quality", "high", "--no-sequence"])

    assert result.exit_code == 0
    assert f"Mix written to {output} (6:08.0)" in result.output
    assert "Transitions: 1, harmonic: 100%, avg score: 96.5" in result.output
    assert "Warning: Transition 1 (one -> two) fell back to a cut" in result.output
    assert mock_planner.return_value.build_plan.call_args[1]["sequence"] is False
    job = mock_renderer.return_value.render.call_args[0][0]
    assert job.format == OutputFormat.FLAC
    assert job.quality == Quality.HIGH
    assert job.transitions == plan.transitions


def test_render_failure(runner, tmp_path):
    plan = _plan()
    with mock.patch("mixengine.cli.MixPlanner") as mock_planner, mock.patch("mixengine.cli.MixRenderer") as mock_renderer:
        mock_planner.return_value.analyze_tracks.return_value = (plan.tracks, {})
        mock_planner.return_value.build_plan.return_value = plan
        mock_renderer.return_value.render.return_value = MixResult(
            success=False, error_message="Final encode failed: ffmpeg not found"
        )
        result = runner.invoke(cli, ["render", "one.wav", "two.wav", "-o", str(tmp_path / "mix.mp3")])
    assert result.exit_code == 1
    assert "Error: Final encode failed: ffmpeg not found" in result.output
