"""Camelot wheel notation for musical keys."""

import re
from dataclasses import dataclass
from typing import Optional

KEY_NAMES = ["C", "C#", "D", "D#", "E", "F", "F#", "G", "G#", "A", "A#", "B"]

_FLATS = {"Db": "C#", "Eb": "D#", "Gb": "F#", "Ab": "G#", "Bb": "A#", "Cb": "B", "Fb": "E"}

# Pitch class (C=0) -> wheel number
_MINOR_NUMBERS = [5, 12, 7, 2, 9, 4, 11, 6, 1, 8, 3, 10]
_MAJOR_NUMBERS = [8, 3, 10, 5, 12, 7, 2, 9, 4, 11, 6, 1]

_CAMELOT_RE = re.compile(r"^\s*0?(1[0-2]|[1-9])\s*([AaBb])\s*$")
_MUSICAL_RE = re.compile(r"^\s*([A-Ga-g])([#b]?)\s*(m|min|minor|maj|major)?\s*$")


@dataclass(frozen=True)
class CamelotKey:
    """A position on the Camelot wheel: number 1-12, letter A (minor) or B (major)."""

    number: int
    letter: str

    def __post_init__(self):
        if not 1 <= self.number <= 12:
            raise ValueError(f"Camelot number out of range: {self.number}")
        if self.letter not in ("A", "B"):
            raise ValueError(f"Camelot letter must be A or B: {self.letter}")

    def __str__(self) -> str:
        return f"{self.number}{self.letter}"

    @property
    def is_minor(self) -> bool:
        return self.letter == "A"

    @property
    def pitch_class(self) -> int:
        """Root pitch class (C=0) of the key."""
        table = _MINOR_NUMBERS if self.is_minor else _MAJOR_NUMBERS
        return table.index(self.number)

    @property
    def musical_name(self) -> str:
        """Musical key label such as 'Am' or 'C'."""
        name = KEY_NAMES[self.pitch_class]
        return name + "m" if self.is_minor else name

    def shifted(self, steps: int) -> "CamelotKey":
        """Key `steps` positions clockwise on the wheel, same letter."""
        return CamelotKey((self.number - 1 + steps) % 12 + 1, self.letter)

    def relative(self) -> "CamelotKey":
        return CamelotKey(self.number, "B" if self.is_minor else "A")

    def parallel(self) -> "CamelotKey":
        """Same root, opposite mode (A minor <-> A major)."""
        if self.is_minor:
            return CamelotKey((self.number + 2) % 12 + 1, "B")
        return CamelotKey((self.number - 4) % 12 + 1, "A")

    @classmethod
    def from_pitch_class(cls, pitch_class: int, minor: bool) -> "CamelotKey":
        table = _MINOR_NUMBERS if minor else _MAJOR_NUMBERS
        return cls(table[pitch_class % 12], "A" if minor else "B")


def parse_key(text: Optional[str]) -> Optional[CamelotKey]:
    """Parse Camelot ('8A') or musical ('Am', 'Eb minor', 'F#') notation.

    Returns:
        CamelotKey, or None when the text is empty or unrecognized.
    """
    if not text:
        return None
    if isinstance(text, CamelotKey):
        return text

    match = _CAMELOT_RE.match(text)
    if match:
        return CamelotKey(int(match.group(1)), match.group(2).upper())

    match = _MUSICAL_RE.match(text)
    if not match:
        return None
    root = match.group(1).upper() + match.group(2)
    root = _FLATS.get(root, root)
    if root not in KEY_NAMES:
        return None
    minor = match.group(3) in ("m", "min", "minor")
    return CamelotKey.from_pitch_class(KEY_NAMES.index(root), minor)
