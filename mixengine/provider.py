"""Optional richer analysis from a third-party provider (bars, beats, sections).

When a track carries such an analysis its bar grid and sections take
priority over the local extractor for mix points and crossfade length.
"""

from dataclasses import replace
from typing import List, Optional, Protocol, Sequence, Tuple

from .logging_config import get_logger
from .models import ExternalAnalysis, ExternalSection, MixTrack, SegmentType

logger = get_logger(__name__)


class AnalysisProvider(Protocol):
    """Anything that can look up a bar/section grid for a track."""

    def fetch(self, track: MixTrack) -> Optional[ExternalAnalysis]:
        ...


def section_energy(section: ExternalSection) -> float:
    """Map section loudness (dB) onto 0-1."""
    return min(max((section.loudness + 60) / 60, 0.0), 1.0)


def classify_sections(analysis: ExternalAnalysis) -> List[Tuple[ExternalSection, SegmentType]]:
    """Label provider sections by position and loudness."""
    sections = analysis.sections
    duration = analysis.duration or (sections[-1].end if sections else 0.0)
    labelled = []
    for i, section in enumerate(sections):
        position = section.start / duration if duration > 0 else 0.0
        energy = section_energy(section)
        nxt = sections[i + 1] if i + 1 < len(sections) else None

        if i == 0 or (position < 0.2 and energy < 0.5):
            kind = SegmentType.INTRO
        elif i == len(sections) - 1 or (position > 0.8 and energy < 0.6):
            kind = SegmentType.OUTRO
        elif section.loudness > -10 and energy > 0.75:
            kind = SegmentType.DROP
        elif 0.3 <= position <= 0.8 and energy < 0.4:
            kind = SegmentType.BREAKDOWN
        elif nxt is not None and nxt.loudness > section.loudness + 3:
            kind = SegmentType.BUILDUP
        else:
            kind = SegmentType.VERSE
        labelled.append((section, kind))
    return labelled


def bar_starts(analysis: ExternalAnalysis) -> List[float]:
    return [bar.start for bar in analysis.bars]


def nearest_bar(analysis: ExternalAnalysis, t: float) -> float:
    bars = bar_starts(analysis)
    if not bars:
        return t
    return min(bars, key=lambda b: abs(b - t))


def external_mix_out(analysis: ExternalAnalysis, tail_seconds: float = 30.0) -> float:
    """Mix-out: outro start, else last breakdown, else end of last drop,
    else the last bar before the final `tail_seconds`."""
    labelled = classify_sections(analysis)
    by_type = {}
    for section, kind in labelled:
        by_type.setdefault(kind, []).append(section)

    if SegmentType.OUTRO in by_type and len(labelled) > 1:
        point = by_type[SegmentType.OUTRO][-1].start
    elif SegmentType.BREAKDOWN in by_type:
        point = by_type[SegmentType.BREAKDOWN][-1].start
    elif SegmentType.DROP in by_type:
        point = by_type[SegmentType.DROP][-1].end
    else:
        limit = analysis.duration - tail_seconds
        earlier = [b for b in bar_starts(analysis) if b <= limit]
        point = earlier[-1] if earlier else max(limit, 0.0)
    return nearest_bar(analysis, point)


def external_mix_in(analysis: ExternalAnalysis) -> float:
    """Mix-in: an early buildup, else the intro end, else the start."""
    labelled = classify_sections(analysis)
    limit = analysis.duration * 0.3
    point = 0.0
    buildups = [s for s, kind in labelled if kind == SegmentType.BUILDUP and s.start < limit]
    intros = [s for s, kind in labelled if kind == SegmentType.INTRO]
    if buildups:
        point = buildups[0].start
    elif intros and len(labelled) > 1:
        point = intros[0].end
    return nearest_bar(analysis, point)


def section_type_at(analysis: ExternalAnalysis, t: float) -> Optional[SegmentType]:
    for section, kind in classify_sections(analysis):
        if section.start <= t < section.end:
            return kind
    return None


def external_crossfade_bars(
    out_type: Optional[SegmentType], in_type: Optional[SegmentType], harmonic: bool
) -> int:
    """Crossfade length in bars for a pair of section types."""
    if out_type == SegmentType.OUTRO or in_type == SegmentType.INTRO:
        return 32
    if out_type == SegmentType.BREAKDOWN and in_type == SegmentType.BUILDUP:
        return 16
    if out_type == SegmentType.DROP and in_type == SegmentType.DROP:
        return 8
    if out_type == SegmentType.VERSE and in_type == SegmentType.VERSE:
        return 16
    if harmonic:
        return 32
    return 8


def attach_external(tracks: Sequence[MixTrack], provider: Optional[AnalysisProvider]) -> List[MixTrack]:
    """Attach provider analysis where available; tracks without it keep local data.

    Runs before any rendering so provider latency never blocks processing.
    """
    if provider is None:
        return list(tracks)
    attached = []
    for track in tracks:
        try:
            external = provider.fetch(track)
        except Exception as e:
            logger.warning("Analysis provider failed for %s: %s", track.display_name, e)
            external = None
        attached.append(replace(track, external=external) if external else track)
    return attached
