"""Configuration for mix engine analysis, sequencing and rendering.

Every heuristic threshold used by the pipeline lives here so calibration
can vary them without touching algorithm code.
"""

import hashlib
from dataclasses import asdict, dataclass, field
from typing import Dict, Optional, Tuple

from .exceptions import ConfigError

# Krumhansl-Kessler key profiles, C-rooted
MAJOR_PROFILE = (6.35, 2.23, 3.48, 2.33, 4.38, 4.09, 2.52, 5.19, 2.39, 3.66, 2.29, 2.88)
MINOR_PROFILE = (6.33, 2.68, 3.52, 5.38, 2.60, 3.53, 2.54, 4.75, 3.98, 2.69, 3.34, 3.17)

SUPPORTED_EXTENSIONS = (".mp3", ".wav", ".flac", ".ogg", ".oga", ".m4a", ".aac", ".aiff", ".aif", ".opus")


@dataclass
class SegmentThresholds:
    """Thresholds for the energy-window segment classifier."""

    # Window length in seconds (2-8; shorter finds drops more precisely)
    window_seconds: float = 4.0

    # Leading/trailing share of the track labelled intro/outro
    intro_fraction: float = 0.1
    outro_fraction: float = 0.1

    # Drop: delta above mean * ratio AND level above max * ratio
    drop_delta_ratio: float = 0.15
    drop_level_ratio: float = 0.85

    # Buildup/breakdown neighbours of a drop need a delta beyond mean * ratio
    neighbour_delta_ratio: float = 0.05

    # Mid-track windows below mean * ratio are breakdowns
    breakdown_level_ratio: float = 0.6

    # Window energy range below this is treated as a flat track
    flat_tolerance: float = 0.05


@dataclass
class AnalysisConfig:
    """Configuration for audio analysis."""

    # Decoding
    sample_rate: int = 22050
    min_duration: float = 30.0

    # Energy curve (Hz) and RMS window (seconds)
    energy_rate: float = 20.0
    energy_window: float = 0.1

    # Tempo estimation
    tempo_envelope_rate: float = 100.0
    tempo_min_bpm: float = 60.0
    tempo_max_bpm: float = 180.0
    tempo_section_start: float = 0.3
    tempo_section_end: float = 0.7
    tempo_min_section: float = 10.0
    fold_low_bpm: float = 85.0
    fold_high_bpm: float = 175.0
    default_bpm: float = 120.0

    # Beat grid
    min_beats: int = 10
    beats_per_bar: int = 4

    # Key estimation (Goertzel chroma)
    key_window: float = 30.0
    key_frame: float = 1.0
    key_octaves: Tuple[int, int] = (2, 5)

    # Mix point selection (fractions of duration)
    mix_out_after: float = 0.7
    mix_out_tail: float = 0.25
    mix_out_fallback: float = 0.97
    mix_in_head: float = 0.4
    highlight_range: Tuple[float, float] = (0.15, 0.85)

    segments: SegmentThresholds = field(default_factory=SegmentThresholds)

    def fingerprint(self) -> str:
        """Stable hash of every threshold, used in cache keys."""
        return hashlib.md5(repr(sorted(asdict(self).items())).encode()).hexdigest()[:12]


# BPM tolerance by genre (+/- BPM)
GENRE_BPM_TOLERANCE = {
    "house": 1.5,
    "techno": 1.5,
    "tech house": 1.5,
    "deep house": 1.5,
    "trance": 2.0,
    "progressive house": 2.0,
    "drum and bass": 3.0,
    "dnb": 3.0,
    "dubstep": 3.0,
    "disco": 4.0,
    "funk": 4.0,
    "pop": 5.0,
    "hip-hop": 8.0,
    "hip hop": 8.0,
    "rap": 8.0,
}


@dataclass
class HarmonicConfig:
    """Weights for the pairwise transition score (sum to 100)."""

    harmonic_weight: float = 40.0
    bpm_weight: float = 40.0
    energy_weight: float = 20.0

    # Energy gap (0-1 scale) at which the energy score reaches zero
    energy_gap_span: float = 0.5
    # Multiplier applied to the energy score when energy drops
    energy_drop_factor: float = 0.85

    default_bpm_tolerance: float = 3.0
    genre_bpm_tolerance: Dict[str, float] = field(default_factory=lambda: dict(GENRE_BPM_TOLERANCE))


@dataclass
class SequencerConfig:
    """Configuration for track ordering."""

    energy_weight: float = 30.0
    danceability_weight: float = 10.0
    reference_artist_bonus: float = 5.0
    artist_penalty: float = 1000.0

    max_two_opt_passes: int = 50
    improvement_epsilon: float = 1e-6

    default_curve: str = "wave"
    seed_strategy: str = "energy"  # energy or compatibility


# Crossfade length in bars by genre
GENRE_CROSSFADE_BARS = {
    "house": 32,
    "techno": 32,
    "trance": 32,
    "drum and bass": 16,
    "dnb": 16,
    "dubstep": 8,
    "hip-hop": 8,
    "hip hop": 8,
    "pop": 8,
    "disco": 16,
    "funk": 16,
}


@dataclass
class TransitionConfig:
    """Configuration for transition type selection and mix points."""

    # Type selection rules
    harmonic_blend_max_bpm: float = 5.0
    eq_swap_max_bpm: float = 15.0
    drop_energy_gap: float = 0.3
    echo_out_min_bpm: float = 15.0
    filter_sweep_min_bpm: float = 5.0

    # Snapping
    beat_snap_tolerance: float = 0.5
    phrase_bars: int = 8
    long_phrase_bars: int = 16
    long_phrase_genres: Tuple[str, ...] = ("house", "techno", "trance")

    # Crossfade length
    drop_bars: int = 4
    low_energy_threshold: float = 0.35
    low_energy_bars: int = 32
    default_bars: int = 16
    genre_bars: Dict[str, int] = field(default_factory=lambda: dict(GENRE_CROSSFADE_BARS))
    max_crossfade: float = 55.0
    min_crossfade: float = 8.0

    # Tempo stretch of the incoming track
    max_stretch_percent: float = 8.0
    min_stretch_bpm: float = 0.5


@dataclass
class RenderConfig:
    """Configuration for the ffmpeg rendering pipeline."""

    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"

    # Loudness normalization target (EBU R128)
    loudness_target: float = -14.0
    true_peak: float = -1.0
    loudness_range: float = 11.0
    sample_rate: int = 44100

    # Resource caps
    step_timeout: float = 600.0
    transcode_timeout: float = 900.0
    probe_timeout: float = 30.0
    nice_level: int = 10
    cpu_limit_percent: int = 80

    # Effect details
    drop_fade: float = 0.5
    drop_gap: float = 0.1
    echo_overlap_ratio: float = 0.3
    sweep_cutoff_hz: float = 2500.0  # highpass on the outgoing track
    sweep_lowpass_hz: float = 400.0  # lowpass the incoming track opens up from
    use_cpulimit: bool = True
    bass_cut_db: float = -6.0

    min_tracks: int = 2
    analysis_workers: Optional[int] = None
    temp_dir: Optional[str] = None


@dataclass
class EngineConfig:
    """Aggregate configuration for one engine instance."""

    analysis: AnalysisConfig = field(default_factory=AnalysisConfig)
    harmonic: HarmonicConfig = field(default_factory=HarmonicConfig)
    sequencer: SequencerConfig = field(default_factory=SequencerConfig)
    transition: TransitionConfig = field(default_factory=TransitionConfig)
    render: RenderConfig = field(default_factory=RenderConfig)

    def validate(self) -> "EngineConfig":
        """Check value ranges.

        Returns:
            The same config, for chaining.

        Raises:
            ConfigError: If a value is outside its allowed range.
        """
        seg = self.analysis.segments
        if not 2.0 <= seg.window_seconds <= 8.0:
            raise ConfigError(f"segment window must be 2-8s, got {seg.window_seconds}")
        if not 0 < self.analysis.tempo_min_bpm < self.analysis.tempo_max_bpm:
            raise ConfigError("tempo_min_bpm must be positive and below tempo_max_bpm")
        if self.analysis.fold_high_bpm < 2 * self.analysis.fold_low_bpm - 1e-9:
            raise ConfigError("fold range must span at least one octave")
        if self.transition.min_crossfade > self.transition.max_crossfade:
            raise ConfigError("min_crossfade exceeds max_crossfade")
        if not 0 < self.render.cpu_limit_percent <= 100:
            raise ConfigError("cpu_limit_percent must be in (0, 100]")
        if not 0 <= self.render.nice_level <= 19:
            raise ConfigError("nice_level must be in [0, 19]")
        if self.render.min_tracks < 2:
            raise ConfigError("a mix needs at least two tracks")
        if self.sequencer.seed_strategy not in ("energy", "compatibility"):
            raise ConfigError(f"unknown seed strategy: {self.sequencer.seed_strategy}")
        return self


# Default configuration instance
DEFAULT_CONFIG = EngineConfig()
