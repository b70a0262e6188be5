"""Target energy curves for a mix, as closed-form functions of position."""

import math
from enum import Enum
from typing import List, Optional, Union


def _plateau_peak(p: float) -> float:
    if p < 0.3:
        return 0.4 + (0.9 - 0.4) * p / 0.3
    if p <= 0.8:
        return 0.9
    return 0.9 - (0.9 - 0.6) * (p - 0.8) / 0.2


_CURVES = {
    "build": lambda p: 0.3 + 0.6 * p,
    "decline": lambda p: 0.9 - 0.6 * p,
    "wave": lambda p: 0.4 + 0.5 * math.sin(math.pi * p),
    "steady": lambda p: 0.6,
    "double_peak": lambda p: 0.4 + 0.5 * math.sin(2 * math.pi * p) ** 2,
    "late_peak": lambda p: 0.3 + 0.6 * math.exp(-(((p - 0.8) / 0.25) ** 2)),
    "rollercoaster": lambda p: 0.55 + 0.35 * math.sin(4 * math.pi * p - math.pi / 2),
    "plateau_peak": _plateau_peak,
}


class EnergyCurve(str, Enum):
    BUILD = "build"
    DECLINE = "decline"
    WAVE = "wave"
    STEADY = "steady"
    DOUBLE_PEAK = "double_peak"
    LATE_PEAK = "late_peak"
    ROLLERCOASTER = "rollercoaster"
    PLATEAU_PEAK = "plateau_peak"

    def target(self, position: float) -> float:
        """Target energy (0-1) at normalized set position (0-1)."""
        p = min(max(position, 0.0), 1.0)
        return min(max(_CURVES[self.value](p), 0.0), 1.0)

    def targets(self, count: int) -> List[float]:
        """Targets for `count` evenly spaced positions, first to last."""
        if count <= 0:
            return []
        if count == 1:
            return [self.target(0.0)]
        return [self.target(i / (count - 1)) for i in range(count)]


def parse_curve(name: Optional[Union[str, EnergyCurve]], default: str = "wave") -> EnergyCurve:
    """Resolve a curve name, accepting '-' or ' ' for '_'.

    Raises:
        ValueError: If the name is not a known curve.
    """
    if isinstance(name, EnergyCurve):
        return name
    key = (name or default).strip().lower().replace("-", "_").replace(" ", "_")
    try:
        return EnergyCurve(key)
    except ValueError:
        options = ", ".join(c.value for c in EnergyCurve)
        raise ValueError(f"Unknown energy curve '{name}'. Choose one of: {options}") from None
