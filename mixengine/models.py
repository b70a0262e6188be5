"""Domain models for the mix engine."""

import uuid
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, List, Optional

from .camelot import CamelotKey


class SegmentType(str, Enum):
    INTRO = "intro"
    VERSE = "verse"
    BUILDUP = "buildup"
    DROP = "drop"
    BREAKDOWN = "breakdown"
    OUTRO = "outro"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class Segment:
    """A contiguous structural section of a track."""

    start_time: float  # seconds
    end_time: float  # seconds
    type: SegmentType
    avg_energy: float  # 0-1 normalized
    beat_count: int = 0

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time


@dataclass(frozen=True)
class TrackAnalysis:
    """Result of feature extraction for one audio file."""

    duration: float  # seconds
    bpm: float
    bpm_confidence: float  # 0-1
    key: Optional[CamelotKey]
    key_name: str  # musical label, e.g. "Am"
    key_confidence: float  # 0-1
    energy: int  # 1-10 overall
    energy_curve: List[float]  # 0-1, sampled at energy_rate
    energy_rate: float  # Hz
    beats: List[float]  # seconds
    downbeats: List[float]  # every 4th beat
    segments: List[Segment]
    mix_in_point: float
    mix_out_point: float
    drop_point: Optional[float] = None
    breakdown_point: Optional[float] = None
    version: int = 1  # cache invalidation version

    @property
    def bpm_str(self) -> str:
        """Human-readable BPM string."""
        return f"{self.bpm:.1f}" if self.bpm else "Unknown"

    def energy_at(self, t: float) -> float:
        """Energy curve value at time t (clamped to the curve)."""
        if not self.energy_curve:
            return 0.0
        idx = int(t * self.energy_rate)
        idx = min(max(idx, 0), len(self.energy_curve) - 1)
        return self.energy_curve[idx]


@dataclass(frozen=True)
class ExternalBar:
    start: float
    duration: float


@dataclass(frozen=True)
class ExternalSection:
    start: float
    duration: float
    loudness: float  # dB, typically -60..0
    tempo: Optional[float] = None
    key: Optional[CamelotKey] = None

    @property
    def end(self) -> float:
        return self.start + self.duration


@dataclass(frozen=True)
class ExternalAnalysis:
    """Bar/beat/section grid from a richer third-party analysis provider."""

    duration: float
    bars: List[ExternalBar]
    beats: List[float]
    sections: List[ExternalSection]


def normalized_energy(energy: Optional[float]) -> float:
    """Map an energy on either the 0-1 or the 1-10 scale onto 0-1."""
    if energy is None:
        return 0.5
    if energy > 1.0:
        return min(energy / 10.0, 1.0)
    return max(energy, 0.0)


@dataclass(frozen=True)
class MixTrack:
    """A track reference used during sequencing and rendering."""

    path: str
    bpm: float
    key: Optional[CamelotKey]
    energy: float  # 0-1 (1-10 values are accepted and normalized)
    artist: Optional[str] = None
    title: Optional[str] = None
    genre: Optional[str] = None
    mood: Optional[str] = None
    danceability: Optional[float] = None  # 0-1
    analysis: Optional[TrackAnalysis] = None
    external: Optional[ExternalAnalysis] = None
    mix_in_override: Optional[float] = None
    mix_out_override: Optional[float] = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])

    @property
    def display_name(self) -> str:
        """Get display name for the track."""
        if self.artist and self.title:
            return f"{self.artist} - {self.title}"
        return self.title or self.path

    @property
    def norm_energy(self) -> float:
        return normalized_energy(self.energy)

    @property
    def duration(self) -> Optional[float]:
        if self.analysis:
            return self.analysis.duration
        if self.external:
            return self.external.duration
        return None

    def with_overrides(self, mix_in: Optional[float] = None, mix_out: Optional[float] = None) -> "MixTrack":
        """Copy of this track with manual mix points; the original is untouched."""
        return replace(
            self,
            mix_in_override=mix_in if mix_in is not None else self.mix_in_override,
            mix_out_override=mix_out if mix_out is not None else self.mix_out_override,
        )

    @classmethod
    def from_analysis(cls, path: str, analysis: TrackAnalysis, **kwargs) -> "MixTrack":
        return cls(
            path=path,
            bpm=analysis.bpm,
            key=analysis.key,
            energy=analysis.energy / 10.0,
            analysis=analysis,
            **kwargs,
        )


class TransitionType(str, Enum):
    CROSSFADE = "crossfade"
    EQ_SWAP = "eq_swap"
    FILTER_SWEEP = "filter_sweep"
    ECHO_OUT = "echo_out"
    DROP = "drop"
    HARMONIC_BLEND = "harmonic_blend"


class KeyClass(str, Enum):
    SAME = "same"
    RELATIVE = "relative"
    ADJACENT = "adjacent"
    ENERGY_BOOST = "energy_boost"
    MODAL = "modal"
    CLASH = "clash"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class TransitionScore:
    """Pairwise transition score with its sub-scores."""

    harmonic: float  # 0-40
    bpm: float  # 0-40
    energy: float  # 0-20
    key_class: KeyClass

    @property
    def total(self) -> float:
        return round(self.harmonic + self.bpm + self.energy, 2)

    def as_dict(self) -> Dict[str, float]:
        return {"harmonic": self.harmonic, "bpm": self.bpm, "energy": self.energy, "total": self.total}


@dataclass(frozen=True)
class Transition:
    """How one track hands over to the next."""

    from_track_id: str
    to_track_id: str
    type: TransitionType
    duration: float  # crossfade seconds
    mix_out_point: float  # seconds into the outgoing track
    mix_in_point: float  # seconds into the incoming track
    bpm_adjustment: float = 0.0  # percent tempo change applied to the incoming track
    notes: str = ""
    score: Optional[TransitionScore] = None

    @property
    def tempo_factor(self) -> float:
        return 1.0 + self.bpm_adjustment / 100.0


@dataclass
class MixPlan:
    """An ordered set of tracks and the transitions between them."""

    tracks: List[MixTrack]
    transitions: List[Transition]
    total_duration: float
    energy_arc: List[float]
    curve: Optional[str] = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])

    @property
    def avg_score(self) -> float:
        scores = [t.score.total for t in self.transitions if t.score]
        return round(sum(scores) / len(scores), 1) if scores else 0.0


@dataclass
class MixConstraints:
    """Shaping input for the sequencer; every field is optional."""

    include_artists: List[str] = field(default_factory=list)
    reference_artists: List[str] = field(default_factory=list)
    bpm_range: Optional[tuple] = None  # (min, max)
    energy_range: Optional[tuple] = None  # (min, max), 0-1
    target_track_count: Optional[int] = None
    energy_curve: Optional[str] = None
    genres: List[str] = field(default_factory=list)
    moods: List[str] = field(default_factory=list)


class OutputFormat(str, Enum):
    MP3 = "mp3"
    WAV = "wav"
    FLAC = "flac"


class Quality(str, Enum):
    DRAFT = "draft"
    STANDARD = "standard"
    HIGH = "high"


@dataclass
class MixJob:
    """One render request."""

    tracks: List[MixTrack]
    output_path: str
    format: OutputFormat = OutputFormat.MP3
    quality: Quality = Quality.STANDARD
    transitions: Optional[List[Transition]] = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])


@dataclass
class MixResult:
    """Outcome of a mix job."""

    success: bool
    output_path: Optional[str] = None
    duration: Optional[float] = None
    transition_count: int = 0
    avg_transition_score: float = 0.0
    harmonic_mix_percentage: float = 0.0
    error_message: Optional[str] = None
    skipped_tracks: List[str] = field(default_factory=list)
    degradations: List[str] = field(default_factory=list)


class JobStatus(str, Enum):
    PENDING = "pending"
    ANALYZING = "analyzing"
    PROCESSING = "processing"
    RENDERING = "rendering"
    COMPLETE = "complete"
    FAILED = "failed"


@dataclass
class MixJobStatus:
    """Snapshot pushed to a job status sink."""

    id: str
    status: JobStatus
    progress: float  # 0-100
    progress_message: str = ""
    result: Optional[MixResult] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class RenderedSegment:
    """Fold accumulator: the mix rendered so far.

    `track_offset` and `track_rate` map the last appended track's own
    timeline onto the mix timeline: mix_time = track_offset + t / track_rate.
    """

    path: str
    duration: float
    track_offset: float = 0.0
    track_rate: float = 1.0
    is_intermediate: bool = False

    def mix_time(self, track_time: float) -> float:
        return self.track_offset + track_time / self.track_rate
