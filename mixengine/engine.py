"""ffmpeg/ffprobe invocation with per-step timeout and CPU capping."""

import os
import shutil
import subprocess
from typing import List, Optional, Sequence

from .config import RenderConfig
from .exceptions import EngineError
from .filters import FilterGraph
from .logging_config import get_logger
from .models import OutputFormat, Quality

logger = get_logger(__name__)

_MP3_QUALITY = {Quality.DRAFT: "5", Quality.STANDARD: "2", Quality.HIGH: "0"}
_FLAC_LEVEL = {Quality.DRAFT: "0", Quality.STANDARD: "5", Quality.HIGH: "8"}

INTERMEDIATE_CODEC = ["-c:a", "pcm_s16le"]


def codec_args(fmt: OutputFormat, quality: Quality = Quality.STANDARD) -> List[str]:
    """Encoder arguments for an output format."""
    if fmt == OutputFormat.MP3:
        return ["-c:a", "libmp3lame", "-q:a", _MP3_QUALITY[quality]]
    if fmt == OutputFormat.FLAC:
        return ["-c:a", "flac", "-compression_level", _FLAC_LEVEL[quality]]
    return list(INTERMEDIATE_CODEC)


def _cleanup_partial_output(output_path: str) -> None:
    """Remove an incomplete output file left by a failed run."""
    try:
        if os.path.exists(output_path):
            os.remove(output_path)
            logger.debug("Cleaned up partial output: %s", output_path)
    except OSError as e:
        logger.warning("Failed to clean up output file %s: %s", output_path, e)


def _validate_output_file(output_path: str, min_size_bytes: int = 1024) -> bool:
    if not os.path.exists(output_path):
        logger.error("Output file does not exist: %s", output_path)
        return False
    size = os.path.getsize(output_path)
    if size < min_size_bytes:
        logger.error("Output file too small: %d bytes (minimum %d)", size, min_size_bytes)
        return False
    return True


class FFmpegEngine:
    """Runs ffmpeg and ffprobe as resource-capped subprocesses."""

    def __init__(self, config: RenderConfig = None):
        self.config = config or RenderConfig()
        self._cpulimit = shutil.which("cpulimit") if self.config.use_cpulimit else None
        self._nice = shutil.which("nice") if self.config.nice_level > 0 else None

    def _wrap(self, cmd: List[str]) -> List[str]:
        if self._nice:
            cmd = [self._nice, "-n", str(self.config.nice_level)] + cmd
        if self._cpulimit:
            cmd = [self._cpulimit, "-l", str(self.config.cpu_limit_percent), "--"] + cmd
        return cmd

    def _run(self, cmd: List[str], timeout: float, output_path: Optional[str] = None) -> str:
        """Run a command, returning stdout.

        Raises:
            EngineError: On a missing binary, non-zero exit or timeout.
        """
        logger.debug("Running: %s", " ".join(cmd))
        try:
            result = subprocess.run(
                self._wrap(cmd),
                capture_output=True,
                text=True,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired as e:
            if output_path:
                _cleanup_partial_output(output_path)
            raise EngineError(f"{os.path.basename(cmd[0])} timed out after {timeout:.0f}s", timed_out=True) from e
        except FileNotFoundError as e:
            raise EngineError(f"{cmd[0]} not found; is ffmpeg installed?") from e

        # A wrapper reports a missing command as exit status 127
        if result.returncode == 127 and len(self._wrap(cmd)) > len(cmd):
            raise EngineError(f"{cmd[0]} not found; is ffmpeg installed?")
        if result.returncode != 0:
            tail = (result.stderr or "").strip().splitlines()[-5:]
            if output_path:
                _cleanup_partial_output(output_path)
            raise EngineError(
                f"{os.path.basename(cmd[0])} failed with code {result.returncode}: {' | '.join(tail) or 'no output'}"
            )
        return result.stdout

    def probe_duration(self, path: str) -> float:
        """Duration of a media file in seconds, read by ffprobe.

        Raises:
            EngineError: If the file cannot be probed.
        """
        cmd = [
            self.config.ffprobe_path,
            "-v",
            "error",
            "-show_entries",
            "format=duration",
            "-of",
            "default=noprint_wrappers=1:nokey=1",
            path,
        ]
        out = self._run(cmd, self.config.probe_timeout).strip()
        try:
            duration = float(out.splitlines()[0])
        except (ValueError, IndexError) as e:
            raise EngineError(f"No duration reported for {os.path.basename(path)}") from e
        if duration <= 0:
            raise EngineError(f"Empty audio stream in {os.path.basename(path)}")
        return duration

    def _ffmpeg(self) -> List[str]:
        return [self.config.ffmpeg_path, "-y", "-hide_banner", "-nostdin", "-loglevel", "error", "-threads", "1"]

    def mix(
        self,
        inputs: Sequence[str],
        graph: FilterGraph,
        output_path: str,
        codec: Sequence[str] = INTERMEDIATE_CODEC,
        timeout: Optional[float] = None,
    ):
        """Render a filtergraph whose final pad is [out].

        Raises:
            EngineError: If ffmpeg fails, times out or writes no usable file.
        """
        cmd = self._ffmpeg()
        for path in inputs:
            cmd += ["-i", path]
        cmd += [
            "-filter_complex",
            graph.render(),
            "-map",
            "[out]",
            "-ar",
            str(self.config.sample_rate),
            *codec,
            output_path,
        ]
        self._run(cmd, timeout or self.config.step_timeout, output_path)
        if not _validate_output_file(output_path):
            _cleanup_partial_output(output_path)
            raise EngineError(f"ffmpeg produced no usable output: {os.path.basename(output_path)}")

    def transcode(self, input_path: str, output_path: str, codec: Sequence[str], timeout: Optional[float] = None):
        """Re-encode without touching levels.

        Raises:
            EngineError: If ffmpeg fails or writes no usable file.
        """
        cmd = self._ffmpeg() + [
            "-i",
            input_path,
            "-map",
            "0:a",
            "-ar",
            str(self.config.sample_rate),
            *codec,
            output_path,
        ]
        self._run(cmd, timeout or self.config.transcode_timeout, output_path)
        if not _validate_output_file(output_path):
            _cleanup_partial_output(output_path)
            raise EngineError(f"ffmpeg produced no usable output: {os.path.basename(output_path)}")
