"""Command-line interface for the mix engine."""

import json
import sys
from pathlib import Path

import click

from .analyzer import AudioAnalyzer
from .config import DEFAULT_CONFIG
from .energy_curves import EnergyCurve
from .exceptions import AnalysisError, AudioTooShortError, MixEngineError
from .logging_config import setup_logging
from .models import MixJob, MixPlan, OutputFormat, Quality, TrackAnalysis
from .planner import MixPlanner
from .renderer import MixRenderer
from .scoring import bpm_compatible, bpm_tolerance, is_harmonic_match, key_class, score_mix_quality
from .visualizer import render_energy_curve, render_plan_arc

CURVE_CHOICES = [c.value for c in EnergyCurve]


def format_time(seconds):
    """Formats seconds into MM:SS.S format.

    Args:
        seconds: Time in seconds, or None.

    Returns:
        str: Formatted time string or "N/A" if None.

    Example:
        >>> format_time(125.3)
        '2:05.3'
    """
    if seconds is None:
        return "N/A"
    minutes = int(seconds // 60)
    secs = seconds % 60
    return f"{minutes}:{secs:04.1f}"


def analysis_dict(file_path: str, analysis: TrackAnalysis) -> dict:
    """JSON-serializable summary of one analysis."""
    return {
        "file": file_path,
        "duration": round(analysis.duration, 2),
        "bpm": round(analysis.bpm, 2),
        "key": str(analysis.key) if analysis.key else None,
        "key_name": analysis.key_name or None,
        "energy": analysis.energy,
        "mix_in_point": analysis.mix_in_point,
        "mix_out_point": analysis.mix_out_point,
        "drop_point": analysis.drop_point,
        "breakdown_point": analysis.breakdown_point,
        "segments": [
            {"type": s.type.value, "start": round(s.start_time, 2), "end": round(s.end_time, 2)}
            for s in analysis.segments
        ],
        "confidence": {"bpm": analysis.bpm_confidence, "key": analysis.key_confidence},
    }


def format_analysis_result(file_path: str, analysis: TrackAnalysis) -> str:
    """Format a single analysis result for text output."""
    key = f"{analysis.key} ({analysis.key_name})" if analysis.key else "Unknown"
    lines = [
        f"Analyzing: {file_path}",
        f"BPM: {analysis.bpm_str} (confidence: {analysis.bpm_confidence:.2f})",
        f"Key: {key} (confidence: {analysis.key_confidence:.2f})",
        f"Energy: {analysis.energy}/10",
        f"Mix-in point: {format_time(analysis.mix_in_point)}",
        f"Mix-out point: {format_time(analysis.mix_out_point)}",
    ]
    if analysis.segments:
        lines.append("Segments: " + ", ".join(f"{s.type.value}@{format_time(s.start_time)}" for s in analysis.segments))
    return "\n".join(lines)


def format_compatibility_output(results) -> str:
    """Format compatible (path, analysis) pairs for text output."""
    if len(results) < 2:
        return ""
    lines = []
    for i in range(len(results) - 1):
        for j in range(i + 1, len(results)):
            (p1, a1), (p2, a2) = results[i], results[j]
            if not is_harmonic_match(a1.key, a2.key):
                continue
            if not bpm_compatible(a1.bpm, a2.bpm, bpm_tolerance(None, None, DEFAULT_CONFIG.harmonic)):
                continue
            if not lines:
                lines.append("Compatible pairs:")
            tempo_diff = a2.bpm - a1.bpm
            lines.append(
                f"✓ {p1} → {p2} (key: {key_class(a1.key, a2.key).value}, tempo: {tempo_diff:+.1f} BPM)"
            )
    return "\n".join(lines) if lines else "No compatible mix pairs found"


def plan_dict(plan: MixPlan) -> dict:
    return {
        "id": plan.id,
        "curve": plan.curve,
        "total_duration": plan.total_duration,
        "avg_score": plan.avg_score,
        "energy_arc": plan.energy_arc,
        "tracks": [
            {"id": t.id, "file": t.path, "bpm": round(t.bpm, 2) if t.bpm else None, "key": str(t.key) if t.key else None}
            for t in plan.tracks
        ],
        "transitions": [
            {
                "from": t.from_track_id,
                "to": t.to_track_id,
                "type": t.type.value,
                "duration": t.duration,
                "mix_out_point": t.mix_out_point,
                "mix_in_point": t.mix_in_point,
                "bpm_adjustment": t.bpm_adjustment,
                "score": t.score.as_dict() if t.score else None,
                "notes": t.notes,
                "mix_quality": score_mix_quality(t, a, b),
            }
            for t, a, b in zip(plan.transitions, plan.tracks, plan.tracks[1:])
        ],
    }


def format_plan(plan: MixPlan) -> str:
    lines = [f"Mix plan: {len(plan.tracks)} tracks, {format_time(plan.total_duration)}, avg score {plan.avg_score:.1f}"]
    for i, track in enumerate(plan.tracks):
        lines.append(f"{i + 1}. {track.display_name} ({track.bpm:.1f} BPM, {track.key or '?'})")
        if i < len(plan.transitions):
            t = plan.transitions[i]
            lines.append(
                f"   ↳ {t.type.value} over {t.duration:.1f}s at {format_time(t.mix_out_point)} → "
                f"{format_time(t.mix_in_point)}: {t.notes}"
            )
    return "\n".join(lines)


def _build_plan(audio_files, curve, sequence=True) -> MixPlan:
    """Analyze files and plan a mix; exits on fewer than two usable tracks."""
    planner = MixPlanner()
    tracks, failures = planner.analyze_tracks(audio_files)
    for path, error in failures.items():
        click.echo(f"Skipping {path}: {error}", err=True)
    try:
        return planner.build_plan(tracks, curve=curve, sequence=sequence)
    except MixEngineError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.pass_context
def cli(ctx, verbose):
    """Mix Engine - Analyze, sequence and render DJ mixes."""
    setup_logging(verbose)
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose


@cli.command()
@click.argument("audio_files", nargs=-1, required=True)
@click.option("--format", "output_format", default="text", type=click.Choice(["text", "json"]))
@click.option("--visualize", is_flag=True, help="Show the energy curve of each track")
def analyze(audio_files, output_format, visualize):
    """Analyze audio files for DJ mixing parameters.

    Detects BPM, key, energy, segments and mix points. When multiple files
    are provided, also lists compatible track pairs.

    Example:
        mixengine analyze track1.mp3 track2.mp3 --format json
    """
    analyzer = AudioAnalyzer()
    results = []
    warnings = {}

    for file_path in audio_files:
        if not Path(file_path).exists():
            click.echo(f"Error: Unable to load audio file: {file_path}", err=True)
            sys.exit(1)
        try:
            results.append((file_path, analyzer.analyze(file_path)))
        except AudioTooShortError as e:
            warnings[file_path] = str(e)
        except AnalysisError as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(1)

    if output_format == "json":
        tracks = [analysis_dict(p, a) for p, a in results]
        tracks += [{"file": p, "warning": w} for p, w in warnings.items()]
        click.echo(json.dumps(tracks[0] if len(tracks) == 1 else {"tracks": tracks}, indent=2))
        return

    for i, (file_path, analysis) in enumerate(results):
        if i > 0:
            click.echo()
        click.echo(format_analysis_result(file_path, analysis))
        if visualize:
            render_energy_curve(file_path, analysis)
    for file_path, warning in warnings.items():
        click.echo(f"\nAnalyzing: {file_path}\n{warning}")
    if len(results) > 1:
        click.echo()
        click.echo(format_compatibility_output(results))


@cli.command()
@click.argument("audio_files", nargs=-1, required=True)
@click.option("--curve", default="wave", type=click.Choice(CURVE_CHOICES), help="Target energy curve")
@click.option("--format", "output_format", default="text", type=click.Choice(["text", "json"]))
@click.option("--show-arc", is_flag=True, help="Show the planned energy arc")
def plan(audio_files, curve, output_format, show_arc):
    """Order tracks into a mix and choose the transitions.

    Example:
        mixengine plan *.mp3 --curve build --show-arc
    """
    mix_plan = _build_plan(audio_files, curve)
    if output_format == "json":
        click.echo(json.dumps(plan_dict(mix_plan), indent=2))
        return
    click.echo(format_plan(mix_plan))
    if show_arc:
        render_plan_arc(mix_plan)


@cli.command()
@click.argument("audio_files", nargs=-1, required=True)
@click.option("--output", "-o", "output_path", required=True, help="Output file")
@click.option("--format", "output_format", default=None, type=click.Choice([f.value for f in OutputFormat]))
@click.option("--quality", default=Quality.STANDARD.value, type=click.Choice([q.value for q in Quality]))
@click.option("--curve", default="wave", type=click.Choice(CURVE_CHOICES), help="Target energy curve")
@click.option("--no-sequence", is_flag=True, help="Keep the tracks in the given order")
def render(audio_files, output_path, output_format, quality, curve, no_sequence):
    """Plan and render a continuous mix with ffmpeg.

    Example:
        mixengine render a.mp3 b.mp3 c.mp3 -o mix.mp3 --quality high
    """
    if output_format is None:
        suffix = Path(output_path).suffix.lstrip(".").lower()
        output_format = suffix if suffix in [f.value for f in OutputFormat] else OutputFormat.MP3.value

    mix_plan = _build_plan(audio_files, curve, sequence=not no_sequence)
    job = MixJob(
        tracks=mix_plan.tracks,
        output_path=output_path,
        format=OutputFormat(output_format),
        quality=Quality(quality),
        transitions=mix_plan.transitions,
    )

    def _progress(stage, percent, message):
        click.echo(f"[{percent:5.1f}%] {stage}: {message}", err=True)

    result = MixRenderer().render(job, progress=_progress)
    if not result.success:
        click.echo(f"Error: {result.error_message}", err=True)
        sys.exit(1)

    click.echo(f"Mix written to {result.output_path} ({format_time(result.duration)})")
    click.echo(
        f"Transitions: {result.transition_count}, harmonic: {result.harmonic_mix_percentage:.0f}%, "
        f"avg score: {result.avg_transition_score:.1f}"
    )
    for note in result.degradations:
        click.echo(f"Warning: {note}", err=True)
    for path in result.skipped_tracks:
        click.echo(f"Skipped: {path}", err=True)


if __name__ == "__main__":
    cli()
