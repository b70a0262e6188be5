"""Mix job execution: analyze, fold tracks pairwise through ffmpeg, transcode."""

import os
import tempfile
import threading
from dataclasses import replace
from typing import Callable, Dict, List, Optional, Tuple

from .analyzer import AudioAnalyzer
from .config import EngineConfig
from .engine import INTERMEDIATE_CODEC, FFmpegEngine, codec_args
from .exceptions import (
    EngineError,
    InsufficientTracksError,
    JobCancelledError,
    MixEngineError,
    RenderFatalError,
    RenderStepError,
)
from .filters import concat_graph, plan_step, transition_graph
from .logging_config import get_logger
from .models import (
    JobStatus,
    MixJob,
    MixJobStatus,
    MixResult,
    MixTrack,
    RenderedSegment,
    Transition,
)
from .scoring import is_harmonic_match, score_transition
from .transitions import TransitionSelector, playing_bpm

logger = get_logger(__name__)

ProgressCallback = Callable[[str, float, str], None]
StatusSink = Callable[[MixJobStatus], None]

_ALLOWED = {
    JobStatus.PENDING: {JobStatus.ANALYZING, JobStatus.FAILED},
    JobStatus.ANALYZING: {JobStatus.PROCESSING, JobStatus.FAILED},
    JobStatus.PROCESSING: {JobStatus.RENDERING, JobStatus.FAILED},
    JobStatus.RENDERING: {JobStatus.COMPLETE, JobStatus.FAILED},
    JobStatus.COMPLETE: set(),
    JobStatus.FAILED: set(),
}


class StatusReporter:
    """Tracks a job's state and reports progress to a callback and a sink."""

    def __init__(self, job_id: str, callback: Optional[ProgressCallback] = None, sink: Optional[StatusSink] = None):
        """Initialize the reporter.

        Args:
            job_id: The job ID.
            callback: Receives (stage, percent 0-100, message).
            sink: Receives MixJobStatus snapshots.
        """
        self.job_id = job_id
        self.callback = callback
        self.sink = sink
        self.status = JobStatus.PENDING
        self.progress = 0.0

    def advance(self, status: JobStatus):
        """Move to a new state.

        Raises:
            ValueError: If the state machine does not allow the move.
        """
        if status == self.status:
            return
        if status not in _ALLOWED[self.status]:
            raise ValueError(f"Illegal job transition {self.status.value} -> {status.value}")
        self.status = status

    def update(self, percent: float, message: str = "", result: Optional[MixResult] = None, error: str = None):
        self.progress = max(0.0, min(percent, 100.0))
        logger.info(
            "[job=%s] PROGRESS: stage=%s, percent=%.1f%%, message=%s",
            self.job_id,
            self.status.value,
            self.progress,
            message or "-",
        )
        if self.callback:
            self.callback(self.status.value, self.progress, message)
        if self.sink:
            self.sink(
                MixJobStatus(
                    id=self.job_id,
                    status=self.status,
                    progress=self.progress,
                    progress_message=message,
                    result=result,
                    error=error,
                )
            )

    def complete(self, result: MixResult):
        self.advance(JobStatus.COMPLETE)
        self.update(100.0, "Mix complete", result=result)

    def fail(self, message: str, result: MixResult):
        self.status = JobStatus.FAILED
        self.update(self.progress, message, result=result, error=message)


class MixRenderer:
    """Renders mix jobs with an external audio engine.

    Holds no per-job state, so one instance can serve concurrent jobs.
    """

    def __init__(
        self,
        config: EngineConfig = None,
        engine: FFmpegEngine = None,
        analyzer: AudioAnalyzer = None,
        selector: TransitionSelector = None,
    ):
        self.config = (config or EngineConfig()).validate()
        self.engine = engine or FFmpegEngine(self.config.render)
        self.analyzer = analyzer or AudioAnalyzer(self.config.analysis, max_workers=self.config.render.analysis_workers)
        self.selector = selector or TransitionSelector(self.config.transition, self.config.harmonic)

    def render(
        self,
        job: MixJob,
        progress: Optional[ProgressCallback] = None,
        cancel: Optional[threading.Event] = None,
        sink: Optional[StatusSink] = None,
    ) -> MixResult:
        """Run a job to completion.

        Args:
            job: The mix job.
            progress: Optional (stage, percent, message) callback.
            cancel: Set to abort at the next step boundary.
            sink: Optional MixJobStatus receiver.

        Returns:
            MixResult; failures are reported in it rather than raised.
        """
        reporter = StatusReporter(job.id, progress, sink)
        skipped: List[str] = []
        try:
            with tempfile.TemporaryDirectory(prefix=f"mixengine-{job.id}-", dir=self.config.render.temp_dir) as work_dir:
                reporter.advance(JobStatus.ANALYZING)
                tracks, durations = self._analyze_stage(job, reporter, cancel, skipped)

                reporter.advance(JobStatus.PROCESSING)
                segment, mixed, degradations = self._process_stage(job, tracks, durations, work_dir, reporter, cancel)

                reporter.advance(JobStatus.RENDERING)
                result = self._render_stage(job, segment, tracks, mixed, reporter, cancel)
            result.skipped_tracks = skipped
            result.degradations = degradations
            reporter.complete(result)
            return result
        except MixEngineError as e:
            message = str(e)
            logger.error("Mix job %s failed: %s", job.id, message)
        except Exception as e:
            message = "Unexpected error while rendering the mix"
            logger.error("Mix job %s failed: %s", job.id, e)
            logger.debug("Mix job %s traceback", job.id, exc_info=True)

        if reporter.status in (JobStatus.RENDERING, JobStatus.COMPLETE):
            _remove_quietly(job.output_path)
        result = MixResult(success=False, error_message=message, skipped_tracks=skipped)
        reporter.fail(message, result)
        return result

    # --- Analyzing ---

    def _analyze_stage(
        self, job: MixJob, reporter: StatusReporter, cancel: Optional[threading.Event], skipped: List[str]
    ) -> Tuple[List[MixTrack], Dict[str, float]]:
        """Probe every track and fill in missing analyses; bad tracks are appended to `skipped`."""
        total = len(job.tracks)
        durations: Dict[str, float] = {}
        readable: List[MixTrack] = []

        for i, track in enumerate(job.tracks):
            _check_cancel(cancel)
            try:
                durations[track.id] = self.engine.probe_duration(track.path)
                readable.append(track)
            except EngineError as e:
                logger.warning("Skipping unreadable track %s: %s", track.display_name, e)
                skipped.append(track.path)
            reporter.update(15.0 * (i + 1) / total, f"Checked {track.display_name}")

        missing = [t.path for t in readable if t.analysis is None and t.external is None]
        analyses = {}
        if missing:
            def _on_result(path: str, done: int, count: int):
                reporter.update(15.0 + 15.0 * done / count, f"Analyzed {os.path.basename(path)}")

            analyses, failures = self.analyzer.analyze_many(missing, on_result=_on_result)
            skipped.extend(failures)

        tracks = []
        for track in readable:
            if track.analysis is None and track.external is None:
                analysis = analyses.get(track.path)
                if analysis is None:
                    continue
                track = replace(
                    track,
                    analysis=analysis,
                    bpm=track.bpm or analysis.bpm,
                    key=track.key or analysis.key,
                )
            tracks.append(track)

        if len(tracks) < self.config.render.min_tracks:
            raise InsufficientTracksError(
                f"Only {len(tracks)} of {total} tracks are usable; at least {self.config.render.min_tracks} are required"
            )
        if skipped:
            logger.warning("Skipped %d unusable track(s): %s", len(skipped), ", ".join(skipped))
        reporter.update(30.0, f"{len(tracks)} tracks ready")
        return tracks, durations

    # --- Processing ---

    def _transitions_for(self, job: MixJob, tracks: List[MixTrack]) -> List[Transition]:
        """Planned transitions where the pair survived, fresh ones elsewhere."""
        planned = {(t.from_track_id, t.to_track_id): t for t in (job.transitions or [])}
        transitions = []
        playing = None
        for a, b in zip(tracks, tracks[1:]):
            transition = planned.get((a.id, b.id))
            if transition is None:
                transition = self.selector.select(a, b, playing)
            transitions.append(transition)
            playing = playing_bpm(b, transition)
        return transitions

    def _process_stage(
        self,
        job: MixJob,
        tracks: List[MixTrack],
        durations: Dict[str, float],
        work_dir: str,
        reporter: StatusReporter,
        cancel: Optional[threading.Event],
    ) -> Tuple[RenderedSegment, List[Tuple[Transition, MixTrack, MixTrack]], List[str]]:
        """Fold the ordered tracks into one rendered segment."""
        transitions = self._transitions_for(job, tracks)
        segment = RenderedSegment(path=tracks[0].path, duration=durations[tracks[0].id])
        mixed = []
        degradations = []
        steps = len(transitions)

        for i, transition in enumerate(transitions):
            _check_cancel(cancel)
            outgoing, incoming = tracks[i], tracks[i + 1]
            reporter.update(
                30.0 + 60.0 * i / steps,
                f"Mixing {outgoing.display_name} -> {incoming.display_name} ({transition.type.value})",
            )
            output = os.path.join(work_dir, f"step_{i:03d}.wav")
            previous = segment
            try:
                segment = self._mix_step(i, segment, transition, incoming, durations[incoming.id], output)
                mixed.append((transition, outgoing, incoming))
            except RenderStepError as e:
                note = f"Transition {i + 1} ({outgoing.display_name} -> {incoming.display_name}) fell back to a cut: {e}"
                logger.warning(note)
                degradations.append(note)
                segment = self._concat_step(i, segment, incoming, output)
            if previous.is_intermediate:
                _remove_quietly(previous.path)

        reporter.update(90.0, f"Mixed {len(mixed)} of {steps} transitions")
        return segment, mixed, degradations

    def _mix_step(
        self,
        step: int,
        segment: RenderedSegment,
        transition: Transition,
        incoming: MixTrack,
        incoming_duration: float,
        output: str,
    ) -> RenderedSegment:
        """One pairwise mix.

        Raises:
            RenderStepError: If the engine fails or times out.
        """
        layout = plan_step(transition, segment.track_offset, segment.track_rate, self.config.render)
        out_cut = min(layout.out_cut, segment.duration)
        if out_cut != layout.out_cut:
            layout = replace(layout, out_cut=out_cut)
        graph = transition_graph(transition, layout, self.config.render)
        try:
            self.engine.mix([segment.path, incoming.path], graph, output, INTERMEDIATE_CODEC, self.config.render.step_timeout)
            duration = self.engine.probe_duration(output)
        except EngineError as e:
            raise RenderStepError(str(e), step=step) from e

        expected = layout.expected_duration(incoming_duration)
        logger.debug("Step %d: %.1fs rendered, %.1fs expected", step, duration, expected)
        return RenderedSegment(
            path=output,
            duration=duration,
            track_offset=layout.join_time - layout.in_start / layout.tempo,
            track_rate=layout.tempo,
            is_intermediate=True,
        )

    def _concat_step(self, step: int, segment: RenderedSegment, incoming: MixTrack, output: str) -> RenderedSegment:
        """Fallback: append the raw next track without a transition.

        Raises:
            RenderFatalError: If even the plain concatenation fails.
        """
        try:
            self.engine.mix([segment.path, incoming.path], concat_graph(self.config.render), output, INTERMEDIATE_CODEC)
            duration = self.engine.probe_duration(output)
        except EngineError as e:
            raise RenderFatalError(f"Could not append {incoming.display_name} after a failed transition: {e}") from e
        return RenderedSegment(
            path=output,
            duration=duration,
            track_offset=segment.duration,
            track_rate=1.0,
            is_intermediate=True,
        )

    # --- Rendering ---

    def _render_stage(
        self,
        job: MixJob,
        segment: RenderedSegment,
        tracks: List[MixTrack],
        mixed: List[Tuple[Transition, MixTrack, MixTrack]],
        reporter: StatusReporter,
        cancel: Optional[threading.Event],
    ) -> MixResult:
        """Transcode the final mix and compute quality metrics.

        Raises:
            RenderFatalError: If transcoding or probing the output fails.
        """
        _check_cancel(cancel)
        reporter.update(95.0, f"Encoding {job.format.value}")
        out_dir = os.path.dirname(os.path.abspath(job.output_path))
        try:
            os.makedirs(out_dir, exist_ok=True)
            self.engine.transcode(segment.path, job.output_path, codec_args(job.format, job.quality))
            duration = self.engine.probe_duration(job.output_path)
        except (OSError, EngineError) as e:
            raise RenderFatalError(f"Final encode failed: {e}") from e

        scores = [(t.score or score_transition(a, b, self.config.harmonic)).total for t, a, b in mixed]
        harmonic = sum(1 for _, a, b in mixed if is_harmonic_match(a.key, b.key))
        count = len(mixed)
        result = MixResult(
            success=True,
            output_path=job.output_path,
            duration=round(duration, 2),
            transition_count=count,
            avg_transition_score=round(sum(scores) / count, 1) if count else 0.0,
            harmonic_mix_percentage=round(100.0 * harmonic / count, 1) if count else 0.0,
        )
        logger.info(
            "Mix %s rendered: %d tracks, %.1fs, %d transitions (%.0f%% harmonic, avg score %.1f)",
            job.id,
            len(tracks),
            result.duration,
            count,
            result.harmonic_mix_percentage,
            result.avg_transition_score,
        )
        return result


def _check_cancel(cancel: Optional[threading.Event]):
    if cancel is not None and cancel.is_set():
        raise JobCancelledError("Mix job cancelled")


def _remove_quietly(path: str):
    try:
        if path and os.path.exists(path):
            os.remove(path)
    except OSError as e:
        logger.warning("Could not remove %s: %s", path, e)
