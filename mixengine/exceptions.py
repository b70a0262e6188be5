"""Custom exceptions for the mix engine."""

from enum import Enum


class MixEngineError(Exception):
    """Base class for all mix engine errors."""

    pass


class AnalysisFailure(str, Enum):
    """Why a track could not be analyzed."""

    UNREADABLE = "unreadable"
    UNSUPPORTED = "unsupported"
    TOO_SHORT = "too_short"


class AnalysisError(MixEngineError):
    """Raised when a track cannot be turned into a TrackAnalysis.

    The job that owns the track skips it and continues.
    """

    reason = AnalysisFailure.UNREADABLE

    def __init__(self, message: str, path: str = None):
        super().__init__(message)
        self.path = path


class AudioLoadError(AnalysisError):
    """Raised when an audio file cannot be loaded or decoded."""

    reason = AnalysisFailure.UNREADABLE


class AudioUnsupportedError(AnalysisError):
    """Raised when an audio container is not supported."""

    reason = AnalysisFailure.UNSUPPORTED


class AudioTooShortError(AnalysisError):
    """Raised when an audio file is too short for reliable analysis."""

    reason = AnalysisFailure.TOO_SHORT


class InsufficientTracksError(MixEngineError):
    """Raised when fewer than two usable tracks remain for a mix."""

    pass


class RenderStepError(MixEngineError):
    """Raised when a single pairwise mix step fails.

    The renderer recovers by concatenating the next track un-mixed.
    """

    def __init__(self, message: str, step: int = None):
        super().__init__(message)
        self.step = step


class RenderFatalError(MixEngineError):
    """Raised when the final transcode or job I/O fails."""

    pass


class EngineError(MixEngineError):
    """Raised when an ffmpeg/ffprobe invocation fails or times out."""

    def __init__(self, message: str, timed_out: bool = False):
        super().__init__(message)
        self.timed_out = timed_out


class ConfigError(MixEngineError):
    """Raised when configuration values are out of range."""

    pass


class JobCancelledError(MixEngineError):
    """Raised at a step boundary when a job's cancel event is set."""

    pass
