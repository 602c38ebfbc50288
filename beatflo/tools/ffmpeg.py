"""ffmpeg / ffprobe argument builders, filter graphs and output parsers."""

import math
import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Union

OptionValue = Union[str, int, float]


@dataclass
class FilterNode:
    """One filter in a graph: ``[in1][in2]name=k=v:k=v[out]``."""
    name: str
    options: Dict[str, OptionValue] = field(default_factory=dict)
    inputs: List[str] = field(default_factory=list)
    outputs: List[str] = field(default_factory=list)

    def render(self) -> str:
        text = "".join(f"[{label}]" for label in self.inputs)
        text += self.name
        if self.options:
            text += "=" + ":".join(f"{k}={_format_option(v)}" for k, v in self.options.items())
        text += "".join(f"[{label}]" for label in self.outputs)
        return text


class FilterGraph:
    """Ordered list of filter nodes rendered to ``-filter_complex`` syntax."""

    def __init__(self):
        self.nodes: List[FilterNode] = []

    def add(self, node: FilterNode) -> FilterNode:
        self.nodes.append(node)
        return node

    def output_labels(self) -> List[str]:
        produced = [label for n in self.nodes for label in n.outputs]
        consumed = {label for n in self.nodes for label in n.inputs}
        return [label for label in produced if label not in consumed]

    def render(self) -> str:
        return ";".join(node.render() for node in self.nodes)


def render_chain(nodes: Iterable[FilterNode]) -> str:
    """Render unlabeled filters as a simple ``-af`` chain."""
    return ",".join(node.render() for node in nodes)


def crossfade_graph(
    track_count: int,
    duration: float,
    curve: str = "tri",
    output: str = "out",
) -> FilterGraph:
    """Crossfade every consecutive pair of audio inputs.

    Two inputs need a single ``acrossfade``. More inputs are folded left:
    the result of each join becomes the first input of the next one, with
    intermediate labels ``a01``, ``a02``... and the final join writing
    ``output``.
    """
    if track_count < 2:
        raise ValueError("A crossfade needs at least 2 inputs")

    graph = FilterGraph()
    previous = "0:a"
    for i in range(1, track_count):
        label = output if i == track_count - 1 else f"a{i:02d}"
        graph.add(FilterNode(
            name="acrossfade",
            options={"d": duration, "c1": curve, "c2": curve},
            inputs=[previous, f"{i}:a"],
            outputs=[label],
        ))
        previous = label
    return graph


def build_mixset_args(
    inputs: Sequence[str],
    output_path: str,
    crossfade: float,
    quality: int = 2,
) -> List[str]:
    """Single ffmpeg invocation mixing all inputs into one mp3."""
    graph = crossfade_graph(len(inputs), crossfade)
    args = ["-hide_banner", "-nostats"]
    for path in inputs:
        args += ["-i", path]
    args += [
        "-filter_complex", graph.render(),
        "-map", f"[{graph.output_labels()[-1]}]",
        "-codec:a", "libmp3lame",
        "-q:a", str(quality),
        "-y",
        output_path,
    ]
    return args


def expected_mix_duration(durations: Sequence[float], crossfade: float) -> float:
    """Each join overlaps one crossfade window."""
    if not durations:
        return 0.0
    return sum(durations) - (len(durations) - 1) * crossfade


def build_probe_args(path: str) -> List[str]:
    return [
        "-v", "error",
        "-show_entries", "format=duration",
        "-of", "default=noprint_wrappers=1:nokey=1",
        path,
    ]


def parse_duration(stdout: str) -> Optional[float]:
    for line in stdout.splitlines():
        try:
            value = float(line.strip())
        except ValueError:
            continue
        if math.isfinite(value) and value > 0:
            return value
    return None


RMS_KEY = "lavfi.astats.Overall.RMS_level"


def build_levels_args(path: str) -> List[str]:
    """Per-frame RMS metadata plus aggregate volume stats, discarding output."""
    chain = render_chain([
        FilterNode("astats", {"metadata": 1, "reset": 1}),
        FilterNode("ametadata", {"mode": "print", "key": RMS_KEY}),
        FilterNode("volumedetect"),
    ])
    return ["-hide_banner", "-nostats", "-i", path, "-af", chain, "-f", "null", "-"]


_RMS_RE = re.compile(re.escape(RMS_KEY) + r"=(-?inf|-?\d+(?:\.\d+)?)")
_VOLUME_RE = re.compile(r"(mean|max)_volume:\s*(-?inf|-?\d+(?:\.\d+)?) dB")

# Level used for frames reported as -inf (digital silence)
SILENCE_DB = -90.0


def parse_rms_levels(lines: Iterable[str]) -> List[float]:
    levels = []
    for line in lines:
        match = _RMS_RE.search(line)
        if match:
            levels.append(_parse_db(match.group(1)))
    return levels


def parse_volume_stats(lines: Iterable[str]) -> Dict[str, float]:
    """``{"mean": dB, "max": dB}`` from volumedetect, keys only when present."""
    stats: Dict[str, float] = {}
    for line in lines:
        match = _VOLUME_RE.search(line)
        if match:
            stats[match.group(1)] = _parse_db(match.group(2))
    return stats


def _parse_db(text: str) -> float:
    value = float(text)
    return value if math.isfinite(value) else SILENCE_DB


def _format_option(value: OptionValue) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)
