"""Declarative ffmpeg filtergraphs, one builder per transition type.

Graphs are plain data until rendered, so the same inputs always yield the
same filter string. Every builder consumes the prepared streams `a1`
(outgoing mix) and `a2` (incoming track) and produces `out`.
"""

from dataclasses import dataclass, field
from typing import Callable, Dict, List, Tuple

from .config import RenderConfig
from .models import Transition, TransitionType


class Expr(str):
    """A filter argument that must be quoted (contains commas or parens)."""


def _fmt(value) -> str:
    if isinstance(value, Expr):
        return f"'{value}'"
    if isinstance(value, float):
        text = f"{value:.3f}".rstrip("0").rstrip(".")
        return text if text not in ("", "-0") else "0"
    return str(value)


@dataclass(frozen=True)
class Filter:
    """A single ffmpeg filter with named parameters (in insertion order)."""

    name: str
    params: Tuple[Tuple[str, object], ...] = ()

    @classmethod
    def of(cls, name: str, **params) -> "Filter":
        return cls(name, tuple(params.items()))

    def render(self) -> str:
        if not self.params:
            return self.name
        args = ":".join(f"{k}={_fmt(v)}" for k, v in self.params)
        return f"{self.name}={args}"


@dataclass(frozen=True)
class FilterChain:
    """Linear chain of filters between labelled pads."""

    inputs: Tuple[str, ...]
    filters: Tuple[Filter, ...]
    outputs: Tuple[str, ...]

    def render(self) -> str:
        ins = "".join(f"[{label}]" for label in self.inputs)
        outs = "".join(f"[{label}]" for label in self.outputs)
        return ins + ",".join(f.render() for f in self.filters) + outs


@dataclass
class FilterGraph:
    chains: List[FilterChain] = field(default_factory=list)

    def add(self, inputs, filters, outputs) -> "FilterGraph":
        self.chains.append(FilterChain(tuple(inputs), tuple(filters), tuple(outputs)))
        return self

    def render(self) -> str:
        return ";".join(chain.render() for chain in self.chains)


@dataclass(frozen=True)
class StepLayout:
    """Where a pairwise step cuts and joins, in seconds.

    out_cut: end of the outgoing mix (mix timeline).
    in_start: start of the incoming track (its own timeline).
    overlap: seconds both play together.
    gap: silence inserted between them.
    tempo: atempo factor applied to the incoming track.
    """

    out_cut: float
    in_start: float
    overlap: float
    gap: float = 0.0
    tempo: float = 1.0

    @property
    def join_time(self) -> float:
        """Mix time at which the incoming track starts."""
        return self.out_cut - self.overlap + self.gap

    def expected_duration(self, incoming_duration: float) -> float:
        return self.join_time + max(incoming_duration - self.in_start, 0.0) / self.tempo


def plan_step(
    transition: Transition, track_offset: float, track_rate: float, config: RenderConfig
) -> StepLayout:
    """Lay out one step from a transition and the mix's timeline mapping.

    The outgoing track fades from its mix-out point; the incoming track
    starts early enough to reach full level at its mix-in point.
    """
    mix_out = track_offset + transition.mix_out_point / track_rate
    tempo = transition.tempo_factor

    if transition.type == TransitionType.DROP:
        return StepLayout(
            out_cut=mix_out + config.drop_fade,
            in_start=transition.mix_in_point,
            overlap=0.0,
            gap=config.drop_gap,
            tempo=tempo,
        )

    if transition.type == TransitionType.ECHO_OUT:
        overlap = transition.duration * config.echo_overlap_ratio
    else:
        overlap = transition.duration
    preroll = min(overlap, transition.mix_in_point)
    return StepLayout(
        out_cut=mix_out + transition.duration,
        in_start=transition.mix_in_point - preroll,
        overlap=overlap,
        tempo=tempo,
    )


# --- Shared input preparation ---


def loudness_filters(config: RenderConfig) -> List[Filter]:
    """Normalize loudness, then pin the stream format so pads can be joined."""
    return [
        Filter.of("loudnorm", I=config.loudness_target, TP=config.true_peak, LRA=config.loudness_range),
        Filter.of("aresample", osr=config.sample_rate),
        Filter.of("aformat", sample_fmts="fltp", channel_layouts="stereo"),
    ]


def input_chains(graph: FilterGraph, layout: StepLayout, config: RenderConfig) -> FilterGraph:
    """Trim and normalize both inputs into [a1] and [a2]."""
    graph.add(
        ["0:a"],
        [Filter.of("atrim", start=0.0, end=layout.out_cut), Filter.of("asetpts", expr=Expr("PTS-STARTPTS"))]
        + loudness_filters(config),
        ["a1"],
    )
    incoming = [Filter.of("atrim", start=layout.in_start), Filter.of("asetpts", expr=Expr("PTS-STARTPTS"))]
    if abs(layout.tempo - 1.0) > 1e-6:
        incoming.append(Filter.of("atempo", tempo=round(layout.tempo, 5)))
    graph.add(["1:a"], incoming + loudness_filters(config), ["a2"])
    return graph


# --- Per-type builders ---


def _crossfade(d: float, c1: str, c2: str) -> Filter:
    return Filter.of("acrossfade", d=d, c1=c1, c2=c2)


def build_crossfade(graph: FilterGraph, layout: StepLayout, t: Transition, config: RenderConfig):
    graph.add(["a1", "a2"], [_crossfade(layout.overlap, "tri", "tri")], ["out"])


def build_harmonic_blend(graph: FilterGraph, layout: StepLayout, t: Transition, config: RenderConfig):
    # Inputs are already loudness matched; equal-power curves keep the level steady
    graph.add(["a1", "a2"], [_crossfade(layout.overlap, "qsin", "qsin")], ["out"])


def build_eq_swap(graph: FilterGraph, layout: StepLayout, t: Transition, config: RenderConfig):
    # Incoming bass stays cut for the first half of the overlap, outgoing bass for the second
    swap = layout.out_cut - layout.overlap / 2
    graph.add(
        ["a1"],
        [Filter.of("bass", g=config.bass_cut_db, f=100, w=0.5, enable=Expr(f"gte(t,{_fmt(swap)})"))],
        ["a1eq"],
    )
    graph.add(
        ["a2"],
        [Filter.of("bass", g=config.bass_cut_db, f=100, w=0.5, enable=Expr(f"lt(t,{_fmt(layout.overlap / 2)})"))],
        ["a2eq"],
    )
    graph.add(["a1eq", "a2eq"], [_crossfade(layout.overlap, "exp", "log")], ["out"])


def build_filter_sweep(graph: FilterGraph, layout: StepLayout, t: Transition, config: RenderConfig):
    start = _fmt(layout.out_cut - layout.overlap)
    span = _fmt(layout.overlap)
    ramp = f"clip((t-{start})/{span},0,1)"
    graph.add(["a1"], [Filter.of("asplit", outputs=2)], ["a1dry", "a1wet"])
    graph.add(
        ["a1wet"],
        [
            Filter.of("highpass", f=config.sweep_cutoff_hz, p=2),
            Filter.of("highpass", f=config.sweep_cutoff_hz, p=2),
            Filter.of("volume", volume=Expr(ramp), eval="frame"),
        ],
        ["a1hp"],
    )
    graph.add(["a1dry"], [Filter.of("volume", volume=Expr(f"1-{ramp}"), eval="frame")], ["a1dr"])
    graph.add(["a1dr", "a1hp"], [Filter.of("amix", inputs=2, normalize=0, duration="longest")], ["a1sw"])

    # Incoming starts lowpassed and opens up over the overlap
    opening = f"clip(t/{span},0,1)"
    graph.add(["a2"], [Filter.of("asplit", outputs=2)], ["a2dry", "a2wet"])
    graph.add(
        ["a2wet"],
        [
            Filter.of("lowpass", f=config.sweep_lowpass_hz, p=2),
            Filter.of("volume", volume=Expr(f"1-{opening}"), eval="frame"),
        ],
        ["a2lp"],
    )
    graph.add(["a2dry"], [Filter.of("volume", volume=Expr(opening), eval="frame")], ["a2dr"])
    graph.add(["a2dr", "a2lp"], [Filter.of("amix", inputs=2, normalize=0, duration="longest")], ["a2sw"])
    graph.add(["a1sw", "a2sw"], [_crossfade(layout.overlap, "tri", "tri")], ["out"])


def build_echo_out(graph: FilterGraph, layout: StepLayout, t: Transition, config: RenderConfig):
    tail = t.duration
    start = max(layout.out_cut - tail, 0.0)
    delay = round(min(max(tail * 150, 100.0), 1500.0))
    graph.add(["a1"], [Filter.of("asplit", outputs=2)], ["a1head", "a1tail"])
    graph.add(
        ["a1head"],
        [Filter.of("atrim", end=start), Filter.of("asetpts", expr=Expr("PTS-STARTPTS"))],
        ["a1h"],
    )
    graph.add(
        ["a1tail"],
        [
            Filter.of("atrim", start=start),
            Filter.of("asetpts", expr=Expr("PTS-STARTPTS")),
            Filter.of("aecho", in_gain=0.8, out_gain=0.7, delays=f"{delay}|{delay * 2}", decays="0.5|0.3"),
            Filter.of("afade", t="out", st=0.0, d=tail),
        ],
        ["a1t"],
    )
    graph.add(["a1h", "a1t"], [Filter.of("concat", n=2, v=0, a=1)], ["a1e"])
    graph.add(["a1e", "a2"], [_crossfade(layout.overlap, "tri", "exp")], ["out"])


def build_drop(graph: FilterGraph, layout: StepLayout, t: Transition, config: RenderConfig):
    fade_start = max(layout.out_cut - config.drop_fade, 0.0)
    graph.add(["a1"], [Filter.of("afade", t="out", st=fade_start, d=config.drop_fade)], ["a1d"])
    graph.add(
        [],
        [
            Filter.of("aevalsrc", exprs=Expr("0|0"), d=layout.gap, s=config.sample_rate),
            Filter.of("aformat", sample_fmts="fltp", channel_layouts="stereo"),
        ],
        ["gap"],
    )
    graph.add(["a2"], [Filter.of("afade", t="in", st=0.0, d=0.05)], ["a2d"])
    graph.add(["a1d", "gap", "a2d"], [Filter.of("concat", n=3, v=0, a=1)], ["out"])


Builder = Callable[[FilterGraph, StepLayout, Transition, RenderConfig], None]

TRANSITION_BUILDERS: Dict[TransitionType, Builder] = {
    TransitionType.CROSSFADE: build_crossfade,
    TransitionType.HARMONIC_BLEND: build_harmonic_blend,
    TransitionType.EQ_SWAP: build_eq_swap,
    TransitionType.FILTER_SWEEP: build_filter_sweep,
    TransitionType.ECHO_OUT: build_echo_out,
    TransitionType.DROP: build_drop,
}

_missing = set(TransitionType) - set(TRANSITION_BUILDERS)
if _missing:
    raise RuntimeError(f"No filter builder for: {sorted(m.value for m in _missing)}")


def transition_graph(transition: Transition, layout: StepLayout, config: RenderConfig) -> FilterGraph:
    """Full filtergraph for one pairwise mix step."""
    graph = input_chains(FilterGraph(), layout, config)
    TRANSITION_BUILDERS[transition.type](graph, layout, transition, config)
    return graph


def concat_graph(config: RenderConfig) -> FilterGraph:
    """Fallback graph: current mix followed by the raw next track, un-mixed."""
    graph = FilterGraph()
    graph.add(["0:a"], loudness_filters(config), ["a1"])
    graph.add(["1:a"], loudness_filters(config), ["a2"])
    graph.add(["a1", "a2"], [Filter.of("concat", n=2, v=0, a=1)], ["out"])
    return graph
