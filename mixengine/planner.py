"""Mix plan assembly: sequence a pool, pick transitions, predict the length."""

from dataclasses import replace
from typing import Dict, List, Optional, Sequence, Tuple

from .analyzer import AudioAnalyzer
from .config import EngineConfig
from .exceptions import AnalysisError, InsufficientTracksError
from .filters import plan_step
from .logging_config import get_logger
from .models import MixConstraints, MixPlan, MixTrack, Transition
from .provider import AnalysisProvider, attach_external
from .sequencer import TrackSequencer
from .transitions import TransitionSelector

logger = get_logger(__name__)


def planned_duration(tracks: Sequence[MixTrack], transitions: Sequence[Transition], config: EngineConfig) -> float:
    """Length of the rendered mix, folded with the renderer's step layout."""
    if not tracks:
        return 0.0
    total = tracks[0].duration or 0.0
    offset, rate = 0.0, 1.0
    for transition, incoming in zip(transitions, tracks[1:]):
        layout = plan_step(transition, offset, rate, config.render)
        layout = replace(layout, out_cut=min(layout.out_cut, total))
        total = layout.expected_duration(incoming.duration or 0.0)
        offset = layout.join_time - layout.in_start / layout.tempo
        rate = layout.tempo
    return round(total, 2)


class MixPlanner:
    """Builds MixPlans from analyzed tracks."""

    def __init__(self, config: EngineConfig = None, analyzer: AudioAnalyzer = None):
        self.config = (config or EngineConfig()).validate()
        self._analyzer = analyzer
        self.sequencer = TrackSequencer(self.config.sequencer, self.config.harmonic)
        self.selector = TransitionSelector(self.config.transition, self.config.harmonic)

    @property
    def analyzer(self) -> AudioAnalyzer:
        if self._analyzer is None:
            self._analyzer = AudioAnalyzer(self.config.analysis, max_workers=self.config.render.analysis_workers)
        return self._analyzer

    def analyze_tracks(
        self, paths: Sequence[str], metadata: Optional[Dict[str, dict]] = None
    ) -> Tuple[List[MixTrack], Dict[str, AnalysisError]]:
        """Analyze files into MixTracks; failures are returned, not raised.

        Args:
            paths: Audio files.
            metadata: Optional per-path MixTrack fields (artist, title, genre, ...).
        """
        metadata = metadata or {}
        trusted = {p: m["bpm"] for p, m in metadata.items() if m.get("bpm")}
        analyses, failures = self.analyzer.analyze_many(list(paths), trusted_bpms=trusted)
        tracks = []
        for path, analysis in analyses.items():
            extra = {k: v for k, v in metadata.get(path, {}).items() if k != "bpm"}
            tracks.append(MixTrack.from_analysis(path, analysis, **extra))
        return tracks, failures

    def transitions_for(self, tracks: Sequence[MixTrack]) -> List[Transition]:
        return self.selector.select_chain(tracks)

    def _plan(self, tracks: List[MixTrack], curve: Optional[str]) -> MixPlan:
        transitions = self.transitions_for(tracks)
        plan = MixPlan(
            tracks=tracks,
            transitions=transitions,
            total_duration=planned_duration(tracks, transitions, self.config),
            energy_arc=[round(t.norm_energy, 3) for t in tracks],
            curve=curve,
        )
        logger.info(
            "Planned %d tracks, %d transitions, %.0fs (avg score %.1f)",
            len(tracks),
            len(transitions),
            plan.total_duration,
            plan.avg_score,
        )
        return plan

    def build_plan(
        self,
        tracks: Sequence[MixTrack],
        curve: Optional[str] = None,
        constraints: Optional[MixConstraints] = None,
        sequence: bool = True,
        shuffle_seed: Optional[int] = None,
        provider: Optional[AnalysisProvider] = None,
    ) -> MixPlan:
        """Order tracks (unless told not to) and choose every transition.

        Args:
            tracks: Analyzed tracks.
            curve: Energy curve name for sequencing.
            constraints: Optional sequencer constraints.
            sequence: Keep the given order when False.
            shuffle_seed: Seed for a varied but reproducible ordering.
            provider: Optional source of bar/section grids.

        Raises:
            InsufficientTracksError: If fewer than two tracks are given.
        """
        if len(tracks) < 2:
            raise InsufficientTracksError(f"Need at least 2 tracks for a mix, got {len(tracks)}")
        tracks = attach_external(tracks, provider)
        if sequence:
            curve = (constraints.energy_curve if constraints else None) or curve or self.config.sequencer.default_curve
            ordered = self.sequencer.order(tracks, curve, constraints, shuffle_seed)
        else:
            ordered = list(tracks)
        return self._plan(ordered, curve if sequence else None)

    def reorder(self, plan: MixPlan, new_order: Sequence[int]) -> MixPlan:
        """Rebuild a plan for a user-chosen order.

        Args:
            plan: The existing plan.
            new_order: Indices into plan.tracks, each used exactly once.

        Raises:
            ValueError: If new_order is not a permutation of the plan's tracks.
        """
        if sorted(new_order) != list(range(len(plan.tracks))):
            raise ValueError(f"Order must be a permutation of 0..{len(plan.tracks) - 1}, got {list(new_order)}")
        tracks = [plan.tracks[i] for i in new_order]
        new_plan = self._plan(tracks, plan.curve)
        new_plan.id = plan.id
        return new_plan
