"""Pure feature-extraction functions: energy, tempo, beats, key, segments.

Every function takes its thresholds explicitly so calibration can vary
them without touching the algorithms.
"""

from typing import List, Optional, Sequence, Tuple

import librosa
import numpy as np

from .camelot import KEY_NAMES, CamelotKey
from .config import MAJOR_PROFILE, MINOR_PROFILE, AnalysisConfig, SegmentThresholds
from .models import Segment, SegmentType

# --- Energy ---


def compute_energy_curve(y: np.ndarray, sr: int, rate: float, window: float) -> np.ndarray:
    """RMS envelope sampled at `rate` Hz, normalized by its own maximum.

    Args:
        y: Mono audio samples.
        sr: Sample rate.
        rate: Output sample rate of the envelope in Hz.
        window: RMS window length in seconds.

    Returns:
        Array of values in [0, 1]. All zeros for silent input.
    """
    if len(y) == 0:
        return np.zeros(0)
    hop = max(1, int(round(sr / rate)))
    frame = max(hop, int(round(sr * window)))
    rms = librosa.feature.rms(y=y, frame_length=frame, hop_length=hop)[0].astype(np.float64)
    peak = float(rms.max()) if rms.size else 0.0
    if peak <= 1e-10:
        return np.zeros_like(rms)
    return rms / peak


def overall_energy(curve: Sequence[float]) -> int:
    """Overall energy on a 1-10 scale from mean and peak of the curve."""
    if len(curve) == 0:
        return 1
    arr = np.asarray(curve, dtype=np.float64)
    raw = (float(arr.mean()) * 0.6 + float(arr.max()) * 0.4) * 10
    return int(min(max(round(raw), 1), 10))


def _smooth(curve: np.ndarray, width: int) -> np.ndarray:
    if width <= 1 or len(curve) < width:
        return curve
    kernel = np.ones(width) / width
    pad = width // 2
    padded = np.pad(curve, (pad, width - 1 - pad), mode="edge")
    return np.convolve(padded, kernel, mode="valid")


# --- Tempo ---


def fold_bpm(bpm: float, low: float = 85.0, high: float = 175.0) -> float:
    """Fold a tempo into [low, high] by doubling or halving.

    >>> fold_bpm(64)
    128
    >>> fold_bpm(200)
    100.0
    """
    if bpm <= 0:
        return bpm
    for _ in range(16):
        if bpm < low:
            bpm *= 2
        elif bpm > high:
            bpm /= 2
        else:
            break
    return bpm


def estimate_tempo(envelope: np.ndarray, rate: float, config: AnalysisConfig) -> Tuple[float, float]:
    """Estimate tempo by autocorrelating the mid-track part of an envelope.

    The first and last parts of the track are skipped since intros and
    outros are tempo-unstable.

    Args:
        envelope: Energy envelope sampled at `rate` Hz.
        rate: Envelope sample rate.
        config: Analysis thresholds.

    Returns:
        (bpm folded into the DJ range, confidence 0-1). Falls back to
        (default_bpm, 0.0) when the section is too short or flat.
    """
    n = len(envelope)
    start = int(n * config.tempo_section_start)
    end = int(n * config.tempo_section_end)
    section = np.asarray(envelope[start:end], dtype=np.float64)
    if len(section) < config.tempo_min_section * rate:
        return config.default_bpm, 0.0

    section = section - section.mean()
    zero_lag = float(np.dot(section, section)) / len(section)
    if zero_lag <= 1e-12:
        return config.default_bpm, 0.0

    min_lag = max(1, int(np.floor(rate * 60.0 / config.tempo_max_bpm)))
    max_lag = min(int(np.ceil(rate * 60.0 / config.tempo_min_bpm)), len(section) - 2)
    if max_lag <= min_lag:
        return config.default_bpm, 0.0

    lags = np.arange(min_lag, max_lag + 1)
    corr = np.array(
        [np.dot(section[:-lag], section[lag:]) / (len(section) - lag) for lag in lags]
    ) / zero_lag

    best = int(np.argmax(corr))
    peak = float(corr[best])
    # Multiples of the beat period correlate about as well; take the shortest near-peak lag
    for i in range(1, len(corr) - 1):
        if corr[i] >= 0.9 * peak and corr[i] >= corr[i - 1] and corr[i] >= corr[i + 1]:
            best = i
            break

    lag = float(lags[best])
    if 0 < best < len(corr) - 1:
        a, b, c = corr[best - 1], corr[best], corr[best + 1]
        denom = a - 2 * b + c
        if denom < 0:
            lag += 0.5 * (a - c) / denom

    bpm = 60.0 * rate / lag
    confidence = float(np.clip(corr[best], 0.0, 1.0))
    return fold_bpm(bpm, config.fold_low_bpm, config.fold_high_bpm), confidence


# --- Beats ---


def beat_grid(bpm: float, duration: float, start: float = 0.0) -> np.ndarray:
    """Evenly spaced beats every 60/bpm seconds from `start`."""
    if bpm <= 0 or duration <= 0:
        return np.zeros(0)
    return np.arange(max(start, 0.0), duration, 60.0 / bpm)


def detect_beats(y: np.ndarray, sr: int, bpm: float, duration: float, min_beats: int = 10) -> np.ndarray:
    """Beat times in seconds, tracked around a known tempo.

    Falls back to a synthetic grid when the tracker finds fewer than
    `min_beats` beats.
    """
    _, beats = librosa.beat.beat_track(y=y, sr=sr, start_bpm=bpm, units="time")
    beats = np.asarray(beats, dtype=np.float64)
    beats = beats[(beats >= 0) & (beats < duration)]
    if len(beats) >= min_beats:
        return np.unique(beats)
    start = float(beats[0]) % (60.0 / bpm) if len(beats) and bpm > 0 else 0.0
    return beat_grid(bpm, duration, start)


def downbeats_from(beats: Sequence[float], beats_per_bar: int = 4) -> np.ndarray:
    return np.asarray(beats, dtype=np.float64)[::beats_per_bar]


# --- Key ---


def goertzel_chroma(
    y: np.ndarray, sr: int, octaves: Tuple[int, int] = (2, 5), frame_seconds: float = 1.0
) -> np.ndarray:
    """12-bin chroma from single-frequency resonators.

    Each pitch class is measured at its exact equal-tempered frequency in
    every octave of the range (A4 = 440 Hz). The per-frame power is the
    single DFT bin a Goertzel resonator computes, evaluated for all
    frames at once.

    Returns:
        Chroma vector normalized to sum to 1 (zeros for silence).
    """
    frame = max(1, int(sr * frame_seconds))
    n_frames = len(y) // frame
    if n_frames == 0:
        frames = np.pad(y, (0, frame - len(y)))[np.newaxis, :]
    else:
        frames = np.asarray(y[: n_frames * frame], dtype=np.float64).reshape(n_frames, frame)
    frames = frames * np.hanning(frame)

    n = np.arange(frame)
    chroma = np.zeros(12)
    for note in range(12):
        for octave in range(octaves[0], octaves[1] + 1):
            freq = 440.0 * 2 ** ((note - 9 + (octave - 4) * 12) / 12)
            if freq >= sr / 2:
                continue
            resonator = np.exp(-2j * np.pi * freq * n / sr)
            chroma[note] += float(np.sum(np.abs(frames @ resonator) ** 2))

    total = chroma.sum()
    if total <= 1e-12:
        return np.zeros(12)
    return chroma / total


def estimate_key(
    chroma: np.ndarray,
    major_profile: Sequence[float] = MAJOR_PROFILE,
    minor_profile: Sequence[float] = MINOR_PROFILE,
) -> Optional[Tuple[CamelotKey, str, float]]:
    """Correlate chroma against rotated major/minor profiles.

    Returns:
        (camelot key, musical name, correlation) or None when the chroma
        carries no tonal information.
    """
    if np.std(chroma) <= 1e-12:
        return None

    major = np.asarray(major_profile) / np.sum(major_profile)
    minor = np.asarray(minor_profile) / np.sum(minor_profile)

    max_corr = -1.0
    best_root = 0
    best_minor = False
    for i in range(12):
        major_corr = np.corrcoef(chroma, np.roll(major, i))[0, 1]
        minor_corr = np.corrcoef(chroma, np.roll(minor, i))[0, 1]

        if major_corr > max_corr:
            max_corr, best_root, best_minor = major_corr, i, False
        if minor_corr > max_corr:
            max_corr, best_root, best_minor = minor_corr, i, True

    key = CamelotKey.from_pitch_class(best_root, best_minor)
    name = KEY_NAMES[best_root] + ("m" if best_minor else "")
    return key, name, float(np.clip(max_corr, 0.0, 1.0))


def key_window(y: np.ndarray, sr: int, seconds: float) -> np.ndarray:
    """Up to `seconds` of audio centred on the middle of the track."""
    length = int(seconds * sr)
    if len(y) <= length:
        return y
    start = len(y) // 2 - length // 2
    return y[start : start + length]


# --- Segments ---


def _window_energies(curve: np.ndarray, rate: float, duration: float, window: float):
    n_windows = max(1, int(np.ceil(duration / window - 1e-9)))
    bounds = []
    energies = []
    for i in range(n_windows):
        start = i * window
        end = min((i + 1) * window, duration)
        lo = int(start * rate)
        hi = max(int(end * rate), lo + 1)
        chunk = curve[lo:hi]
        bounds.append((start, end))
        energies.append(float(chunk.mean()) if len(chunk) else (energies[-1] if energies else 0.0))
    return bounds, np.asarray(energies)


def _count_beats(beats: np.ndarray, start: float, end: float) -> int:
    if len(beats) == 0:
        return 0
    return int(np.count_nonzero((beats >= start) & (beats < end)))


def detect_segments(
    curve: Sequence[float],
    rate: float,
    duration: float,
    beats: Sequence[float],
    thresholds: SegmentThresholds,
) -> List[Segment]:
    """Classify fixed energy windows into structural segments.

    Two passes: label each window, then merge runs of equal labels. The
    result partitions [0, duration) with no gaps or overlaps.

    Args:
        curve: Normalized energy curve.
        rate: Curve sample rate in Hz.
        duration: Track duration in seconds.
        beats: Beat times, used for per-segment beat counts.
        thresholds: Classifier thresholds.

    Returns:
        Time-ordered list of Segment.
    """
    if duration <= 0:
        return []
    curve = np.asarray(curve, dtype=np.float64)
    beats = np.asarray(beats, dtype=np.float64)
    th = thresholds

    bounds, energies = _window_energies(curve, rate, duration, th.window_seconds)
    n = len(energies)

    if n < 3:
        return [
            Segment(0.0, duration, SegmentType.UNKNOWN, float(energies.mean()), _count_beats(beats, 0.0, duration))
        ]
    if float(energies.max() - energies.min()) < th.flat_tolerance:
        return [
            Segment(0.0, duration, SegmentType.VERSE, float(energies.mean()), _count_beats(beats, 0.0, duration))
        ]

    mean = float(energies.mean())
    peak = float(energies.max())
    deltas = np.diff(energies, prepend=energies[0])
    types: List[Optional[SegmentType]] = [None] * n

    # Pass 1: position, then drops and their neighbours
    for i, (start, end) in enumerate(bounds):
        position = (start + end) / 2 / duration
        if position < th.intro_fraction:
            types[i] = SegmentType.INTRO
        elif position > 1 - th.outro_fraction:
            types[i] = SegmentType.OUTRO

    drop_level = th.drop_level_ratio * peak
    for i in range(n):
        if types[i] is None and deltas[i] > th.drop_delta_ratio * mean and energies[i] >= drop_level:
            types[i] = SegmentType.DROP
    for i in range(1, n):
        if types[i] is None and types[i - 1] == SegmentType.DROP and energies[i] >= drop_level:
            types[i] = SegmentType.DROP

    neighbour = th.neighbour_delta_ratio * mean
    for i in range(n):
        if types[i] is not None:
            continue
        if i + 1 < n and types[i + 1] == SegmentType.DROP and deltas[i] > neighbour:
            types[i] = SegmentType.BUILDUP
        elif i > 0 and types[i - 1] == SegmentType.DROP and deltas[i] < -neighbour:
            types[i] = SegmentType.BREAKDOWN
        elif energies[i] < th.breakdown_level_ratio * mean:
            types[i] = SegmentType.BREAKDOWN
        else:
            types[i] = SegmentType.VERSE

    # Pass 2: merge consecutive windows of the same type
    segments: List[Segment] = []
    run_start = 0
    for i in range(1, n + 1):
        if i < n and types[i] == types[run_start]:
            continue
        start = bounds[run_start][0]
        end = bounds[i - 1][1]
        weights = np.array([b[1] - b[0] for b in bounds[run_start:i]])
        avg = float(np.average(energies[run_start:i], weights=weights))
        segments.append(Segment(start, end, types[run_start], avg, _count_beats(beats, start, end)))
        run_start = i
    return segments


# --- Mix points ---


def select_mix_points(
    segments: Sequence[Segment], curve: Sequence[float], rate: float, duration: float, config: AnalysisConfig
) -> Tuple[float, float]:
    """Choose (mix_in, mix_out) from segments, falling back to the curve.

    mix_out: start of the last breakdown/outro after `mix_out_after` of
    the track, else the energy minimum in the final `mix_out_tail`, else
    `mix_out_fallback` of the duration. mix_in: end of the intro, else
    the energy maximum in the first `mix_in_head`, else 0.
    """
    curve = _smooth(np.asarray(curve, dtype=np.float64), max(1, int(rate)))

    mix_out = None
    late = [
        s
        for s in segments
        if s.type in (SegmentType.BREAKDOWN, SegmentType.OUTRO) and s.start_time >= config.mix_out_after * duration
    ]
    if late:
        mix_out = late[-1].start_time
    else:
        lo = int(duration * (1 - config.mix_out_tail) * rate)
        hi = int(duration * config.mix_out_fallback * rate)
        tail = curve[lo:hi]
        if len(tail) and float(np.ptp(tail)) > 1e-6:
            mix_out = (lo + int(np.argmin(tail))) / rate
    if mix_out is None:
        mix_out = duration * config.mix_out_fallback

    mix_in = None
    intro = next((s for s in segments if s.type == SegmentType.INTRO), None)
    if intro is not None and intro.end_time < duration:
        mix_in = intro.end_time
    else:
        head = curve[: int(duration * config.mix_in_head * rate)]
        if len(head) and float(np.ptp(head)) > 1e-6:
            mix_in = int(np.argmax(head)) / rate
    if mix_in is None or mix_in >= mix_out:
        mix_in = 0.0

    return float(mix_in), float(mix_out)


def find_highlights(
    segments: Sequence[Segment], duration: float, span: Tuple[float, float] = (0.15, 0.85)
) -> Tuple[Optional[float], Optional[float]]:
    """(drop_point, breakdown_point) within the middle of the track."""
    lo, hi = span[0] * duration, span[1] * duration
    middle = [s for s in segments if lo <= s.start_time <= hi]
    drops = [s for s in middle if s.type == SegmentType.DROP]
    breakdowns = [s for s in middle if s.type == SegmentType.BREAKDOWN]
    drop_point = max(drops, key=lambda s: s.avg_energy).start_time if drops else None
    breakdown_point = breakdowns[0].start_time if breakdowns else None
    return drop_point, breakdown_point
