"""Audio analysis: turns audio files into TrackAnalysis results."""

import os
from concurrent.futures import ProcessPoolExecutor, as_completed
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

import librosa
import numpy as np

from .cache import CACHE_VERSION, AnalysisCache, DiskCache, cache_key
from .config import SUPPORTED_EXTENSIONS, AnalysisConfig
from .exceptions import AnalysisError, AudioLoadError, AudioTooShortError, AudioUnsupportedError
from .features import (
    compute_energy_curve,
    detect_beats,
    detect_segments,
    downbeats_from,
    estimate_key,
    estimate_tempo,
    find_highlights,
    goertzel_chroma,
    key_window,
    overall_energy,
    select_mix_points,
)
from .logging_config import get_logger
from .models import TrackAnalysis

logger = get_logger(__name__)


def check_audio_path(file_path: str):
    """Reject files that cannot possibly be analyzed, before decoding.

    Raises:
        AudioUnsupportedError: If the container extension is not supported.
        AudioLoadError: If the file does not exist.
    """
    if Path(file_path).suffix.lower() not in SUPPORTED_EXTENSIONS:
        raise AudioUnsupportedError(f"Unsupported audio format: {Path(file_path).suffix or 'none'}", file_path)
    if not os.path.isfile(file_path):
        raise AudioLoadError(f"Unable to load audio file: {file_path} not found", file_path)


def extract_features(file_path: str, config: AnalysisConfig, trusted_bpm: Optional[float] = None) -> TrackAnalysis:
    """Run the full feature-extraction pipeline on one file.

    Module-level so it can run inside worker processes.

    Args:
        file_path: Path to the audio file.
        config: Analysis thresholds.
        trusted_bpm: Tempo from metadata; used as-is with confidence 1.

    Returns:
        TrackAnalysis for the file.

    Raises:
        AudioLoadError: If the audio file cannot be decoded.
        AudioTooShortError: If the audio file is too short for analysis.
    """
    logger.debug("Loading audio file: %s", file_path)
    try:
        y, sr = librosa.load(file_path, sr=config.sample_rate, mono=True)
    except Exception as e:
        logger.error("Failed to load audio file %s: %s", file_path, e)
        raise AudioLoadError(f"Unable to load audio file: {os.path.basename(file_path)}", file_path) from e

    duration = float(librosa.get_duration(y=y, sr=sr))
    logger.debug("Audio duration: %.1fs", duration)
    if duration < config.min_duration:
        logger.warning("Audio too short: %.1fs < %.1fs", duration, config.min_duration)
        raise AudioTooShortError(
            f"File too short for reliable analysis ({duration:.1f}s < {config.min_duration:.0f}s)", file_path
        )

    y = np.nan_to_num(np.asarray(y, dtype=np.float32))
    curve = compute_energy_curve(y, sr, config.energy_rate, config.energy_window)

    if trusted_bpm:
        bpm, bpm_confidence = float(trusted_bpm), 1.0
    else:
        rate = config.tempo_envelope_rate
        envelope = compute_energy_curve(y, sr, rate, 2.0 / rate)
        bpm, bpm_confidence = estimate_tempo(envelope, rate, config)

    beats = detect_beats(y, sr, bpm, duration, config.min_beats)
    downbeats = downbeats_from(beats, config.beats_per_bar)

    chroma = goertzel_chroma(key_window(y, sr, config.key_window), sr, config.key_octaves, config.key_frame)
    key_estimate = estimate_key(chroma)
    if key_estimate:
        key, key_name, key_confidence = key_estimate
    else:
        key, key_name, key_confidence = None, "", 0.0

    segments = detect_segments(curve, config.energy_rate, duration, beats, config.segments)
    mix_in, mix_out = select_mix_points(segments, curve, config.energy_rate, duration, config)
    drop_point, breakdown_point = find_highlights(segments, duration, config.highlight_range)
    energy = overall_energy(curve)

    logger.info(
        "Analysis complete: BPM=%.1f (%.2f), Key=%s (%.2f), Energy=%d/10",
        bpm,
        bpm_confidence,
        key or "Unknown",
        key_confidence,
        energy,
    )

    return TrackAnalysis(
        duration=duration,
        bpm=float(bpm),
        bpm_confidence=float(bpm_confidence),
        key=key,
        key_name=key_name,
        key_confidence=key_confidence,
        energy=energy,
        energy_curve=[float(v) for v in curve],
        energy_rate=config.energy_rate,
        beats=[float(b) for b in beats],
        downbeats=[float(b) for b in downbeats],
        segments=segments,
        mix_in_point=mix_in,
        mix_out_point=mix_out,
        drop_point=drop_point,
        breakdown_point=breakdown_point,
        version=CACHE_VERSION,
    )


class AudioAnalyzer:
    """Analyzes audio files to detect tempo, key, energy, segments and mix points."""

    def __init__(
        self,
        config: AnalysisConfig = None,
        cache: Optional[AnalysisCache] = None,
        use_cache: bool = True,
        max_workers: Optional[int] = None,
    ):
        """Initialize analyzer with configuration.

        Args:
            config: Analysis configuration. Uses defaults if not provided.
            cache: Cache to use. Defaults to a DiskCache when use_cache is set.
            use_cache: Enable result caching. Default True.
            max_workers: Worker processes for batch analysis. Defaults to CPU count.
        """
        self.config = config or AnalysisConfig()
        if cache is None and use_cache:
            cache = DiskCache()
        self.cache = cache
        self.max_workers = max_workers

    def _key(self, file_path: str, trusted_bpm: Optional[float]) -> Optional[str]:
        if self.cache is None:
            return None
        try:
            return cache_key(file_path, f"{self.config.fingerprint()}|{trusted_bpm or ''}")
        except OSError as e:
            logger.warning("Cannot stat %s for caching: %s", file_path, e)
            return None

    def analyze(self, file_path: str, trusted_bpm: Optional[float] = None) -> TrackAnalysis:
        """Analyzes an audio file for DJ mixing parameters.

        Args:
            file_path: Path to the audio file to analyze.
            trusted_bpm: Optional tempo from trusted metadata.

        Returns:
            TrackAnalysis: Analysis results model.

        Raises:
            AnalysisError: If the file is unreadable, unsupported or too short.
        """
        check_audio_path(file_path)

        key = self._key(file_path, trusted_bpm)
        if key:
            cached = self.cache.get(key)
            if cached:
                return cached

        result = extract_features(file_path, self.config, trusted_bpm)

        if key:
            self.cache.set(key, result)
        return result

    def analyze_many(
        self,
        file_paths: List[str],
        trusted_bpms: Optional[Dict[str, float]] = None,
        on_result: Optional[Callable[[str, int, int], None]] = None,
    ) -> Tuple[Dict[str, TrackAnalysis], Dict[str, AnalysisError]]:
        """Analyze many files on a bounded process pool.

        Cache reads and writes happen in this process only.

        Args:
            file_paths: Files to analyze.
            trusted_bpms: Optional per-path trusted tempo.
            on_result: Called as (path, done, total) after each file.

        Returns:
            (analyses, failures), both keyed by path in input order.
        """
        trusted_bpms = trusted_bpms or {}
        total = len(file_paths)
        results: Dict[str, TrackAnalysis] = {}
        failures: Dict[str, AnalysisError] = {}
        pending: List[Tuple[str, Optional[str]]] = []
        done = 0

        def _finish(path: str):
            nonlocal done
            done += 1
            if on_result:
                on_result(path, done, total)

        for path in file_paths:
            try:
                check_audio_path(path)
            except AnalysisError as e:
                logger.warning("Skipping %s: %s", path, e)
                failures[path] = e
                _finish(path)
                continue
            key = self._key(path, trusted_bpms.get(path))
            cached = self.cache.get(key) if key else None
            if cached:
                results[path] = cached
                _finish(path)
            else:
                pending.append((path, key))

        workers = min(self.max_workers or os.cpu_count() or 1, len(pending))
        if workers <= 1:
            for path, key in pending:
                try:
                    result = extract_features(path, self.config, trusted_bpms.get(path))
                except AnalysisError as e:
                    logger.warning("Skipping %s: %s", path, e)
                    failures[path] = e
                else:
                    results[path] = result
                    if key:
                        self.cache.set(key, result)
                _finish(path)
        elif pending:
            logger.info("Analyzing %d tracks on %d workers", len(pending), workers)
            with ProcessPoolExecutor(max_workers=workers) as pool:
                futures = {
                    pool.submit(extract_features, path, self.config, trusted_bpms.get(path)): (path, key)
                    for path, key in pending
                }
                for future in as_completed(futures):
                    path, key = futures[future]
                    try:
                        result = future.result()
                    except AnalysisError as e:
                        logger.warning("Skipping %s: %s", path, e)
                        failures[path] = e
                    else:
                        results[path] = result
                        if key:
                            self.cache.set(key, result)
                    _finish(path)

        ordered = {p: results[p] for p in file_paths if p in results}
        ordered_failures = {p: failures[p] for p in file_paths if p in failures}
        return ordered, ordered_failures
