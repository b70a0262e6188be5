"""Pure harmonic, tempo and energy scoring functions."""

from typing import Optional, Sequence, Tuple

from .camelot import CamelotKey
from .config import HarmonicConfig
from .models import KeyClass, MixTrack, TrackAnalysis, Transition, TransitionScore, normalized_energy

# --- Camelot wheel ---

KEY_CLASS_SCORES = {
    KeyClass.SAME: 100,
    KeyClass.RELATIVE: 90,
    KeyClass.ADJACENT: 80,
    KeyClass.ENERGY_BOOST: 70,
    KeyClass.MODAL: 60,
    KeyClass.CLASH: 0,
    # Unknown keys are neutral, not penalized
    KeyClass.UNKNOWN: 80,
}

_HARMONIC_CLASSES = (KeyClass.SAME, KeyClass.RELATIVE, KeyClass.ADJACENT, KeyClass.UNKNOWN)


def camelot_distance(a: Optional[CamelotKey], b: Optional[CamelotKey]) -> int:
    """Wheel distance between two keys.

    Circular number difference, plus 1 when both number and letter
    differ. Relative major/minor (same number) adds nothing. Missing keys
    are neutral (distance 0).
    """
    if a is None or b is None:
        return 0
    diff = abs(a.number - b.number)
    circular = min(diff, 12 - diff)
    if a.letter != b.letter and a.number != b.number:
        circular += 1
    return circular


def key_class(a: Optional[CamelotKey], b: Optional[CamelotKey]) -> KeyClass:
    """Compatibility class of moving from key a to key b."""
    if a is None or b is None:
        return KeyClass.UNKNOWN
    if a == b:
        return KeyClass.SAME
    if a.number == b.number:
        return KeyClass.RELATIVE
    if a.letter == b.letter:
        step = (b.number - a.number) % 12
        if step in (1, 11):
            return KeyClass.ADJACENT
        if step == 7:
            return KeyClass.ENERGY_BOOST
    if b == a.parallel():
        return KeyClass.MODAL
    return KeyClass.CLASH


def is_harmonic_match(a: Optional[CamelotKey], b: Optional[CamelotKey]) -> bool:
    """Same, relative or adjacent key (or a key is unknown)."""
    return key_class(a, b) in _HARMONIC_CLASSES


def compatible_keys(key: CamelotKey) -> Tuple[CamelotKey, ...]:
    """Keys reachable from `key` without a clash, best first."""
    return (key, key.relative(), key.shifted(1), key.shifted(-1), key.shifted(7), key.parallel())


# --- Tempo ---


def bpm_tolerance(genre1: Optional[str], genre2: Optional[str], config: HarmonicConfig) -> float:
    """BPM tolerance for a pair; the stricter of the two known genres wins."""
    known = [
        config.genre_bpm_tolerance[g.strip().lower()]
        for g in (genre1, genre2)
        if g and g.strip().lower() in config.genre_bpm_tolerance
    ]
    return min(known) if known else config.default_bpm_tolerance


def bpm_compatible(bpm1: float, bpm2: float, tolerance: float) -> bool:
    """Direct, half-time or double-time match within tolerance."""
    if bpm1 <= 0 or bpm2 <= 0:
        return True
    return min(abs(bpm1 - bpm2), abs(bpm1 * 2 - bpm2), abs(bpm1 - bpm2 * 2)) <= tolerance


# (multiple of tolerance, share of the BPM weight), closest band first
_BPM_BANDS = ((0.25, 1.0), (0.5, 0.875), (1.0, 0.75), (2.0, 0.5), (4.0, 0.25), (8.0, 0.125))
_HALF_DOUBLE_SHARE = 0.375


def score_bpm(bpm1: float, bpm2: float, tolerance: float, max_weight: float) -> float:
    """Banded BPM proximity score.

    Non-increasing in |bpm1 - bpm2|, except that a half- or double-time
    match within tolerance lifts a lower direct score to a fixed share.
    """
    if bpm1 <= 0 or bpm2 <= 0:
        return max_weight * 0.5
    diff = abs(bpm1 - bpm2)
    direct = 0.0
    for multiple, share in _BPM_BANDS:
        if diff <= tolerance * multiple:
            direct = round(max_weight * share, 2)
            break
    half_double = round(max_weight * _HALF_DOUBLE_SHARE, 2)
    if direct < half_double and min(abs(bpm1 * 2 - bpm2), abs(bpm1 - bpm2 * 2)) <= tolerance:
        return half_double
    return direct


# --- Energy ---


def score_energy_gap(energy1: float, energy2: float, config: HarmonicConfig) -> float:
    """Energy smoothness score on 0-1 energies.

    Smaller gaps score higher and a step up beats a drop of the same size.
    """
    gap = energy2 - energy1
    base = config.energy_weight * max(0.0, 1 - abs(gap) / config.energy_gap_span)
    if gap < 0:
        base *= config.energy_drop_factor
    return round(base, 2)


# --- Transition score ---


def score_pair(
    first: Tuple[Optional[CamelotKey], float, float],
    second: Tuple[Optional[CamelotKey], float, float],
    config: HarmonicConfig = None,
    genres: Tuple[Optional[str], Optional[str]] = (None, None),
) -> TransitionScore:
    """Score a transition between two (key, bpm, energy) tuples.

    Args:
        first: Outgoing (key, bpm, energy 0-1 or 1-10).
        second: Incoming (key, bpm, energy).
        config: Score weights.
        genres: Optional genres of the two tracks for BPM tolerance.

    Returns:
        TransitionScore with harmonic (<=40), bpm (<=40) and energy (<=20) parts.
    """
    config = config or HarmonicConfig()
    key1, bpm1, energy1 = first
    key2, bpm2, energy2 = second

    cls = key_class(key1, key2)
    harmonic = round(KEY_CLASS_SCORES[cls] / 100 * config.harmonic_weight, 2)
    tolerance = bpm_tolerance(genres[0], genres[1], config)
    bpm = score_bpm(bpm1 or 0.0, bpm2 or 0.0, tolerance, config.bpm_weight)
    energy = score_energy_gap(normalized_energy(energy1), normalized_energy(energy2), config)
    return TransitionScore(harmonic=harmonic, bpm=bpm, energy=energy, key_class=cls)


def score_transition(outgoing: MixTrack, incoming: MixTrack, config: HarmonicConfig = None) -> TransitionScore:
    """Score the hand-over from one MixTrack to the next."""
    return score_pair(
        (outgoing.key, outgoing.bpm, outgoing.energy),
        (incoming.key, incoming.bpm, incoming.energy),
        config,
        (outgoing.genre, incoming.genre),
    )


# --- Rendered transition quality ---


def _near_any(t: float, times: Sequence[float], tolerance: float) -> bool:
    return any(abs(t - x) <= tolerance for x in times)


def score_mix_quality(
    transition: Transition,
    outgoing: MixTrack,
    incoming: MixTrack,
    downbeat_tolerance: float = 0.1,
) -> float:
    """Diagnostic 0-100 score of a concrete transition.

    Key relation (30), BPM gap (25), energy match at the chosen mix
    points (25) and downbeat alignment of those points (20).
    """
    cls = key_class(outgoing.key, incoming.key)
    if cls == KeyClass.SAME:
        score = 30.0
    elif cls in _HARMONIC_CLASSES:
        score = 20.0
    else:
        score = 5.0

    diff = abs((outgoing.bpm or 0) - (incoming.bpm or 0))
    if diff < 2:
        score += 25
    elif diff < 5:
        score += 15
    elif diff < 10:
        score += 8

    out_a: Optional[TrackAnalysis] = outgoing.analysis
    in_a: Optional[TrackAnalysis] = incoming.analysis
    e_out = out_a.energy_at(transition.mix_out_point) if out_a else outgoing.norm_energy
    e_in = in_a.energy_at(transition.mix_in_point) if in_a else incoming.norm_energy
    score += (1 - min(abs(e_out - e_in), 1.0)) * 25

    aligned = 0
    if out_a and _near_any(transition.mix_out_point, out_a.downbeats, downbeat_tolerance):
        aligned += 1
    if in_a and _near_any(transition.mix_in_point, in_a.downbeats, downbeat_tolerance):
        aligned += 1
    score += {0: 0, 1: 10, 2: 20}[aligned]
    return round(score, 1)
