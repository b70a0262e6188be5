"""Rich terminal views of track energy curves and mix energy arcs."""

import os
from typing import List, Optional, Sequence

import numpy as np
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from .energy_curves import parse_curve
from .models import MixPlan, Segment, SegmentType, TrackAnalysis

BLOCKS = " ▁▂▃▄▅▆▇█"
COLORS = ["blue", "cyan", "green", "yellow", "red"]
SEGMENT_COLORS = {
    SegmentType.INTRO: "cyan",
    SegmentType.BUILDUP: "yellow",
    SegmentType.DROP: "red",
    SegmentType.BREAKDOWN: "magenta",
    SegmentType.OUTRO: "blue",
}


def _amplitude_color(level: float) -> str:
    """Map normalized amplitude (0-1) to a color name."""
    idx = min(int(level * len(COLORS)), len(COLORS) - 1)
    return COLORS[idx]


def _format_time(seconds: float) -> str:
    """Format seconds as M:SS."""
    m = int(seconds) // 60
    s = int(seconds) % 60
    return f"{m}:{s:02d}"


def _column(t: float, duration: float, width: int) -> int:
    if duration <= 0:
        return 0
    return min(max(int(t / duration * width), 0), width - 1)


def _place(line: Text, pos: int, label: str, style: str = None) -> int:
    """Overwrite characters of a fixed-width line; returns the end column."""
    width = len(line.plain)
    pos = max(0, min(pos, width - 1))
    end = min(pos + len(label), width)
    line.plain = line.plain[:pos] + label[: end - pos] + line.plain[end:]
    if style:
        line.stylize(style, pos, end)
    return end


def resample_curve(curve: Sequence[float], width: int) -> List[float]:
    """Peak-preserving downsample (or stretch) of a 0-1 curve to `width` columns."""
    if width <= 0 or len(curve) == 0:
        return [0.0] * max(width, 0)
    arr = np.asarray(curve, dtype=np.float64)
    if len(arr) <= width:
        idx = np.linspace(0, len(arr) - 1, width).astype(int)
        return arr[idx].tolist()
    edges = np.linspace(0, len(arr), width + 1).astype(int)
    return [float(arr[a:b].max()) if b > a else 0.0 for a, b in zip(edges[:-1], edges[1:])]


def _build_energy_line(levels: Sequence[float]) -> Text:
    """Build a Rich Text line of colored Unicode block characters."""
    text = Text()
    for level in levels:
        idx = min(int(level * (len(BLOCKS) - 1)), len(BLOCKS) - 1)
        text.append(BLOCKS[idx], style=_amplitude_color(level))
    return text


def _build_marker_line(duration: float, width: int, mix_in: float, mix_out: float) -> Text:
    line = Text(" " * width)
    _place(line, _column(mix_in, duration, width), f"▼ Mix-in {_format_time(mix_in)}", "green")
    out_label = f"Mix-out {_format_time(mix_out)} ▼"
    _place(line, _column(mix_out, duration, width) - len(out_label) + 1, out_label, "red")
    return line


def _build_timeline(duration: float, width: int) -> Text:
    """Build a timeline ruler with minute markers."""
    line = Text(" " * width)
    if duration <= 0:
        return line
    t = 0.0
    while t <= duration:
        _place(line, int(t / duration * (width - 1)), _format_time(t))
        t += 60.0
    line.stylize("dim", 0, width)
    return line


def _build_segment_line(duration: float, width: int, segments: Sequence[Segment]) -> Text:
    line = Text(" " * width)
    for seg in segments:
        start = _column(seg.start_time, duration, width)
        end = _column(seg.end_time, duration, width) + 1
        label = seg.type.value[:5].upper()
        if end - start < len(label):
            continue
        mid = start + (end - start - len(label)) // 2
        _place(line, mid, label, SEGMENT_COLORS.get(seg.type, "white"))
    return line


def render_energy_curve(
    file_path: str, analysis: TrackAnalysis, width: int = 70, console: Optional[Console] = None
) -> None:
    """Print a track's energy curve with segments and mix points.

    Args:
        file_path: Path to the audio file (used for the title).
        analysis: TrackAnalysis for the file.
        width: Character width of the display.
        console: Console to print to; a new one by default.
    """
    console = console or Console()
    duration = analysis.duration
    header = Text(
        f"BPM: {analysis.bpm_str} ({analysis.bpm_confidence:.2f})  "
        f"Key: {analysis.key or 'Unknown'} ({analysis.key_confidence:.2f})  "
        f"Energy: {analysis.energy}/10"
    )

    content = Text()
    content.append_text(header)
    content.append("\n\n")
    segment_line = _build_segment_line(duration, width, analysis.segments)
    if segment_line.plain.strip():
        content.append_text(segment_line)
        content.append("\n")
    content.append_text(_build_energy_line(resample_curve(analysis.energy_curve, width)))
    content.append("\n")
    content.append_text(_build_marker_line(duration, width, analysis.mix_in_point, analysis.mix_out_point))
    content.append("\n")
    content.append_text(_build_timeline(duration, width))

    console.print(Panel(content, title=os.path.basename(file_path), expand=False))


def render_plan_arc(plan: MixPlan, console: Optional[Console] = None) -> None:
    """Print the plan's energy arc next to the curve it was sequenced for."""
    console = console or Console()
    curve = parse_curve(plan.curve) if plan.curve else None
    targets = curve.targets(len(plan.tracks)) if curve else [None] * len(plan.tracks)

    table = Table(title=f"Energy arc ({curve.value if curve else 'as given'})", expand=False)
    table.add_column("#", justify="right")
    table.add_column("Track")
    table.add_column("Energy")
    table.add_column("Target", justify="right")
    table.add_column("Into next")

    for i, (track, energy, target) in enumerate(zip(plan.tracks, plan.energy_arc, targets)):
        filled = int(round(energy * 20))
        bar = Text("█" * filled, style=_amplitude_color(energy))
        bar.append(f" {energy:.2f}")
        transition = plan.transitions[i] if i < len(plan.transitions) else None
        into = f"{transition.type.value} ({transition.score.total:.0f})" if transition and transition.score else ""
        table.add_row(
            str(i + 1),
            track.display_name,
            bar,
            f"{target:.2f}" if target is not None else "-",
            into,
        )
    console.print(table)
