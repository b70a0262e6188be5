"""Transition type selection and mix-point calculation for a track pair."""

from typing import List, Optional, Sequence, Tuple

import numpy as np

from .config import HarmonicConfig, TransitionConfig
from .logging_config import get_logger
from .models import MixTrack, Transition, TransitionScore, TransitionType
from .provider import (
    bar_starts,
    external_crossfade_bars,
    external_mix_in,
    external_mix_out,
    section_type_at,
)
from .scoring import is_harmonic_match, score_transition

logger = get_logger(__name__)

BEATS_PER_BAR = 4


def choose_transition_type(
    harmonic: bool, bpm_diff: float, energy_gap: float, config: TransitionConfig
) -> TransitionType:
    """First matching rule wins.

    Args:
        harmonic: Keys are same, relative or adjacent.
        bpm_diff: Incoming minus outgoing BPM.
        energy_gap: Incoming minus outgoing energy (0-1 scale).
        config: Rule thresholds.
    """
    diff = abs(bpm_diff)
    if harmonic and diff <= config.harmonic_blend_max_bpm:
        return TransitionType.HARMONIC_BLEND
    if harmonic and diff <= config.eq_swap_max_bpm:
        return TransitionType.EQ_SWAP
    if abs(energy_gap) > config.drop_energy_gap:
        return TransitionType.DROP
    if diff > config.echo_out_min_bpm:
        return TransitionType.ECHO_OUT
    if not harmonic and diff > config.filter_sweep_min_bpm:
        return TransitionType.FILTER_SWEEP
    return TransitionType.CROSSFADE


# --- Snapping ---


def snap_to_beat(t: float, beats: Sequence[float], tolerance: float) -> float:
    """Nearest beat if one lies within tolerance, else t unchanged."""
    if len(beats) == 0:
        return t
    arr = np.asarray(beats, dtype=np.float64)
    idx = int(np.argmin(np.abs(arr - t)))
    if abs(arr[idx] - t) <= tolerance:
        return float(arr[idx])
    return t


def snap_to_phrase(t: float, downbeats: Sequence[float], phrase_bars: int, limit: Optional[float] = None) -> float:
    """Snap to the nearest phrase boundary counted from the first downbeat.

    Boundaries beyond `limit` are skipped in favour of the previous one.
    """
    if len(downbeats) < 2 or phrase_bars <= 0:
        return t
    arr = np.asarray(downbeats, dtype=np.float64)
    idx = int(np.argmin(np.abs(arr - t)))
    phrase_idx = int(round(idx / phrase_bars)) * phrase_bars
    if phrase_idx >= len(arr) or (limit is not None and arr[phrase_idx] > limit):
        phrase_idx = (idx // phrase_bars) * phrase_bars
    if limit is not None and arr[phrase_idx] > limit:
        return t
    return float(arr[phrase_idx])


def phrase_bars_for(genre: Optional[str], config: TransitionConfig) -> int:
    if genre and genre.strip().lower() in config.long_phrase_genres:
        return config.long_phrase_bars
    return config.phrase_bars


def crossfade_bars(
    outgoing: MixTrack, incoming: MixTrack, transition_type: TransitionType, config: TransitionConfig
) -> int:
    """Crossfade length in bars from type, energy and genre."""
    if transition_type == TransitionType.DROP:
        return config.drop_bars
    if (outgoing.norm_energy + incoming.norm_energy) / 2 < config.low_energy_threshold:
        return config.low_energy_bars
    for genre in (outgoing.genre, incoming.genre):
        if genre and genre.strip().lower() in config.genre_bars:
            return config.genre_bars[genre.strip().lower()]
    return config.default_bars


def bars_to_seconds(bars: int, bpm: float) -> float:
    bpm = bpm if bpm and bpm > 0 else 120.0
    return bars * BEATS_PER_BAR * 60.0 / bpm


class TransitionSelector:
    """Builds a Transition record for each ordered pair of tracks."""

    def __init__(self, config: TransitionConfig = None, harmonic: HarmonicConfig = None):
        self.config = config or TransitionConfig()
        self.harmonic = harmonic or HarmonicConfig()

    def _grid(self, track: MixTrack) -> Tuple[List[float], List[float]]:
        """(beats, downbeats), preferring the provider's bar grid."""
        if track.external and track.external.bars:
            return list(track.external.beats), bar_starts(track.external)
        if track.analysis:
            return track.analysis.beats, track.analysis.downbeats
        return [], []

    def _raw_mix_out(self, track: MixTrack) -> float:
        if track.mix_out_override is not None:
            return track.mix_out_override
        if track.external:
            return external_mix_out(track.external)
        if track.analysis:
            return track.analysis.mix_out_point
        return track.duration * 0.97 if track.duration else 0.0

    def _raw_mix_in(self, track: MixTrack) -> float:
        if track.mix_in_override is not None:
            return track.mix_in_override
        if track.external:
            return external_mix_in(track.external)
        if track.analysis:
            return track.analysis.mix_in_point
        return 0.0

    def _snap(self, t: float, track: MixTrack, limit: Optional[float]) -> float:
        beats, downbeats = self._grid(track)
        t = snap_to_beat(t, beats, self.config.beat_snap_tolerance)
        return snap_to_phrase(t, downbeats, phrase_bars_for(track.genre, self.config), limit)

    def mix_points(self, outgoing: MixTrack, incoming: MixTrack) -> Tuple[float, float]:
        """Snapped (mix_out, mix_in) for the pair."""
        out_limit = outgoing.duration
        mix_out = self._snap(self._raw_mix_out(outgoing), outgoing, out_limit)
        in_limit = incoming.duration
        mix_in = self._snap(self._raw_mix_in(incoming), incoming, in_limit)
        return mix_out, mix_in

    def crossfade_seconds(
        self, outgoing: MixTrack, incoming: MixTrack, transition_type: TransitionType, mix_out: float, mix_in: float
    ) -> float:
        if outgoing.external and incoming.external and transition_type != TransitionType.DROP:
            bars = external_crossfade_bars(
                section_type_at(outgoing.external, mix_out),
                section_type_at(incoming.external, mix_in),
                is_harmonic_match(outgoing.key, incoming.key),
            )
        else:
            bars = crossfade_bars(outgoing, incoming, transition_type, self.config)
        avg_bpm = ((outgoing.bpm or 0) + (incoming.bpm or 0)) / 2
        return min(bars_to_seconds(bars, avg_bpm), self.config.max_crossfade)

    def _fit(self, crossfade: float, mix_out: float, mix_in: float, outgoing: MixTrack, incoming: MixTrack):
        """Shrink the crossfade to the available lead-out/lead-in time."""
        cfg = self.config
        out_dur, in_dur = outgoing.duration, incoming.duration
        available = [d for d in (
            out_dur - mix_out if out_dur else None,
            in_dur - mix_in if in_dur else None,
        ) if d is not None]
        if available and crossfade > min(available):
            shrunk = max(cfg.min_crossfade, min(available))
            logger.debug("Crossfade %.1fs shrunk to %.1fs to fit", crossfade, shrunk)
            crossfade = min(crossfade, shrunk)
        if out_dur and mix_out + crossfade > out_dur:
            mix_out = max(out_dur - crossfade, 0.0)
        if in_dur and mix_in + crossfade > in_dur:
            mix_in = max(in_dur - crossfade, 0.0)
        return crossfade, mix_out, mix_in

    def bpm_adjustment(self, outgoing: MixTrack, incoming: MixTrack, playing_bpm: Optional[float] = None) -> float:
        """Percent tempo change for the incoming track, 0 when out of bounds.

        Args:
            outgoing: Track being mixed out.
            incoming: Track being mixed in.
            playing_bpm: Tempo the outgoing track is heard at when an earlier
                step stretched it. Defaults to its own BPM.
        """
        target = playing_bpm or outgoing.bpm
        if not target or not incoming.bpm:
            return 0.0
        diff = target - incoming.bpm
        percent = diff / incoming.bpm * 100
        if abs(diff) <= self.config.min_stretch_bpm or abs(percent) > self.config.max_stretch_percent:
            return 0.0
        return round(percent, 3)

    def select(self, outgoing: MixTrack, incoming: MixTrack, playing_bpm: Optional[float] = None) -> Transition:
        """Build the transition from `outgoing` into `incoming`."""
        score = score_transition(outgoing, incoming, self.harmonic)
        harmonic = is_harmonic_match(outgoing.key, incoming.key)
        bpm_diff = (incoming.bpm or 0) - (outgoing.bpm or 0)
        energy_gap = incoming.norm_energy - outgoing.norm_energy
        transition_type = choose_transition_type(harmonic, bpm_diff, energy_gap, self.config)

        mix_out, mix_in = self.mix_points(outgoing, incoming)
        crossfade = self.crossfade_seconds(outgoing, incoming, transition_type, mix_out, mix_in)
        crossfade, mix_out, mix_in = self._fit(crossfade, mix_out, mix_in, outgoing, incoming)
        adjustment = self.bpm_adjustment(outgoing, incoming, playing_bpm)

        transition = Transition(
            from_track_id=outgoing.id,
            to_track_id=incoming.id,
            type=transition_type,
            duration=round(crossfade, 3),
            mix_out_point=round(mix_out, 3),
            mix_in_point=round(mix_in, 3),
            bpm_adjustment=adjustment,
            notes=describe(outgoing, incoming, transition_type, score, bpm_diff, energy_gap),
            score=score,
        )
        logger.debug(
            "Transition %s -> %s: %s, %.1fs at %.1fs/%.1fs",
            outgoing.display_name,
            incoming.display_name,
            transition_type.value,
            crossfade,
            mix_out,
            mix_in,
        )
        return transition

    def select_chain(self, tracks: Sequence[MixTrack]) -> List[Transition]:
        """Transitions for consecutive pairs, each matched to the tempo the previous track plays at."""
        transitions = []
        playing = None
        for outgoing, incoming in zip(tracks, tracks[1:]):
            transition = self.select(outgoing, incoming, playing)
            transitions.append(transition)
            playing = playing_bpm(incoming, transition)
        return transitions


def playing_bpm(incoming: MixTrack, transition: Transition) -> Optional[float]:
    """Tempo the incoming track is heard at once the transition stretches it."""
    if not incoming.bpm:
        return None
    return incoming.bpm * transition.tempo_factor


def describe(
    outgoing: MixTrack,
    incoming: MixTrack,
    transition_type: TransitionType,
    score: TransitionScore,
    bpm_diff: float,
    energy_gap: float,
) -> str:
    """Human-readable summary of a transition."""
    keys = f"{outgoing.key or '?'} -> {incoming.key or '?'} ({score.key_class.value})"
    if energy_gap > 0.05:
        direction = "energy up"
    elif energy_gap < -0.05:
        direction = "energy down"
    else:
        direction = "energy level"
    return f"{keys}, {bpm_diff:+.1f} BPM, {direction}, {transition_type.value.replace('_', ' ')}"
