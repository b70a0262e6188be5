"""Track ordering: greedy nearest-neighbour path refined by 2-opt."""

import random
from typing import List, Optional, Sequence

from .config import HarmonicConfig, SequencerConfig
from .energy_curves import EnergyCurve, parse_curve
from .exceptions import InsufficientTracksError
from .logging_config import get_logger
from .models import MixConstraints, MixTrack
from .scoring import bpm_compatible, bpm_tolerance, is_harmonic_match, score_transition

logger = get_logger(__name__)


def _artist(track: MixTrack) -> str:
    return (track.artist or "").strip().lower()


def _same_artist(a: MixTrack, b: MixTrack) -> bool:
    artist = _artist(a)
    return bool(artist) and artist == _artist(b)


def apply_constraints(tracks: Sequence[MixTrack], constraints: Optional[MixConstraints]) -> List[MixTrack]:
    """Filter a pool by BPM range, energy range, artists, genres and moods.

    Falls back to the unfiltered pool when fewer than two tracks survive.
    """
    pool = list(tracks)
    if constraints is None:
        return pool

    filtered = pool
    if constraints.bpm_range:
        low, high = constraints.bpm_range
        filtered = [t for t in filtered if not t.bpm or low <= t.bpm <= high]
    if constraints.energy_range:
        low, high = constraints.energy_range
        filtered = [t for t in filtered if low <= t.norm_energy <= high]
    if constraints.include_artists:
        wanted = {a.strip().lower() for a in constraints.include_artists}
        filtered = [t for t in filtered if _artist(t) in wanted]
    if constraints.genres:
        genres = {g.strip().lower() for g in constraints.genres}
        filtered = [t for t in filtered if not t.genre or t.genre.strip().lower() in genres]
    if constraints.moods:
        moods = {m.strip().lower() for m in constraints.moods}
        filtered = [t for t in filtered if not t.mood or t.mood.strip().lower() in moods]

    if len(filtered) < 2:
        logger.warning(
            "Constraints leave %d of %d tracks; ignoring them", len(filtered), len(pool)
        )
        return pool
    if len(filtered) < len(pool):
        logger.info("Constraints kept %d of %d tracks", len(filtered), len(pool))
    return filtered


class TrackSequencer:
    """Orders a pool of tracks into a harmonically coherent set."""

    def __init__(self, config: SequencerConfig = None, harmonic: HarmonicConfig = None):
        self.config = config or SequencerConfig()
        self.harmonic = harmonic or HarmonicConfig()

    def order(
        self,
        tracks: Sequence[MixTrack],
        curve: Optional[str] = None,
        constraints: Optional[MixConstraints] = None,
        shuffle_seed: Optional[int] = None,
    ) -> List[MixTrack]:
        """Order tracks into a path that uses each track exactly once.

        Args:
            tracks: Pool of tracks (at least two).
            curve: Energy curve name; constraints.energy_curve wins if set.
            constraints: Optional shaping input.
            shuffle_seed: Shuffle the pool first with this seed, for variety.

        Returns:
            Ordered list of tracks.

        Raises:
            InsufficientTracksError: If fewer than two tracks are given.
        """
        if len(tracks) < 2:
            raise InsufficientTracksError(f"Need at least 2 tracks to sequence, got {len(tracks)}")

        pool = apply_constraints(tracks, constraints)
        if shuffle_seed is not None:
            random.Random(shuffle_seed).shuffle(pool)

        curve_name = (constraints.energy_curve if constraints else None) or curve
        energy_curve = parse_curve(curve_name, self.config.default_curve)
        references = {a.strip().lower() for a in (constraints.reference_artists if constraints else [])}

        matrix = self._score_matrix(pool)
        path = self._greedy(pool, matrix, energy_curve, references)
        passes = self._two_opt(path, matrix)
        self._repair_artists(pool, path)

        logger.debug("Sequenced %d tracks (%s curve, %d 2-opt passes)", len(path), energy_curve.value, passes)

        ordered = [pool[i] for i in path]
        if constraints and constraints.target_track_count and constraints.target_track_count >= 2:
            ordered = ordered[: constraints.target_track_count]
        return ordered

    def _score_matrix(self, pool: List[MixTrack]) -> List[List[float]]:
        """Pairwise transition scores minus the same-artist penalty."""
        n = len(pool)
        matrix = [[0.0] * n for _ in range(n)]
        for i in range(n):
            for j in range(n):
                if i == j:
                    continue
                score = score_transition(pool[i], pool[j], self.harmonic).total
                if _same_artist(pool[i], pool[j]):
                    score -= self.config.artist_penalty
                matrix[i][j] = score
        return matrix

    def _seed(self, pool: List[MixTrack], target: float) -> int:
        if self.config.seed_strategy == "compatibility":
            best, best_count = 0, -1
            for i, a in enumerate(pool):
                count = sum(
                    1
                    for j, b in enumerate(pool)
                    if i != j
                    and is_harmonic_match(a.key, b.key)
                    and bpm_compatible(a.bpm, b.bpm, bpm_tolerance(a.genre, b.genre, self.harmonic))
                )
                if count > best_count:
                    best, best_count = i, count
            return best

        best, best_gap = 0, None
        for i, track in enumerate(pool):
            gap = abs(track.norm_energy - target)
            if best_gap is None or gap < best_gap - 1e-12:
                best, best_gap = i, gap
        return best

    def _bonus(self, track: MixTrack, target: float, references: set) -> float:
        cfg = self.config
        bonus = cfg.energy_weight * (1 - abs(track.norm_energy - target))
        if track.danceability is not None:
            bonus += cfg.danceability_weight * track.danceability
        if references and _artist(track) in references:
            bonus += cfg.reference_artist_bonus
        return bonus

    def _greedy(
        self, pool: List[MixTrack], matrix: List[List[float]], curve: EnergyCurve, references: set
    ) -> List[int]:
        targets = curve.targets(len(pool))
        path = [self._seed(pool, targets[0])]
        unused = [i for i in range(len(pool)) if i != path[0]]

        for position in range(1, len(pool)):
            current = path[-1]
            best, best_value = None, None
            for j in unused:
                value = matrix[current][j] + self._bonus(pool[j], targets[position], references)
                # Strict comparison keeps the earliest input on ties
                if best_value is None or value > best_value + 1e-9:
                    best, best_value = j, value
            path.append(best)
            unused.remove(best)
        return path

    def _two_opt(self, path: List[int], matrix: List[List[float]]) -> int:
        """Reverse sub-paths while that raises the boundary-pair scores.

        Returns:
            Number of passes run.
        """
        n = len(path)
        eps = self.config.improvement_epsilon
        passes = 0
        for _ in range(self.config.max_two_opt_passes):
            passes += 1
            improved = False
            for i in range(n - 1):
                for j in range(i + 1, n):
                    if i == 0 and j == n - 1:
                        continue
                    before = after = 0.0
                    if i > 0:
                        before += matrix[path[i - 1]][path[i]]
                        after += matrix[path[i - 1]][path[j]]
                    if j < n - 1:
                        before += matrix[path[j]][path[j + 1]]
                        after += matrix[path[i]][path[j + 1]]
                    if after > before + eps:
                        path[i : j + 1] = path[i : j + 1][::-1]
                        improved = True
            if not improved:
                break
        return passes

    def _repair_artists(self, pool: List[MixTrack], path: List[int]):
        """Swap away any same-artist neighbours left by the optimizer."""
        n = len(path)

        def clashes_at(k: int) -> bool:
            left = k > 0 and _same_artist(pool[path[k - 1]], pool[path[k]])
            right = k < n - 1 and _same_artist(pool[path[k]], pool[path[k + 1]])
            return left or right

        for i in range(1, n):
            if not _same_artist(pool[path[i - 1]], pool[path[i]]):
                continue
            for k in range(i + 1, n):
                path[i], path[k] = path[k], path[i]
                if not clashes_at(i) and not clashes_at(k):
                    break
                path[i], path[k] = path[k], path[i]
            else:
                logger.warning(
                    "Could not separate back-to-back tracks by %s", pool[path[i]].artist
                )
