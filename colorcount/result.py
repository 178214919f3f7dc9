"""
Colour values and result records.

A Color is a 24-bit RGB value packed into a plain int (0xRRGGBB); it compares
and hashes like the int it is. A ResultRecord is the URL plus the three most
frequent colours of the image it points to, rendered as one CSV line.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

HEADER = '"url","color1","color2","color3"\n'


class Color(int):
    """Packed 0xRRGGBB colour."""

    __slots__ = ()

    def __new__(cls, value: int = 0):
        return super().__new__(cls, int(value) & 0xFFFFFF)

    @classmethod
    def from_rgb(cls, r: int, g: int, b: int) -> "Color":
        """Pack channel values, keeping the low 8 bits of each."""
        return cls(((r & 0xFF) << 16) | ((g & 0xFF) << 8) | (b & 0xFF))

    @property
    def r(self) -> int:
        return (self >> 16) & 0xFF

    @property
    def g(self) -> int:
        return (self >> 8) & 0xFF

    @property
    def b(self) -> int:
        return self & 0xFF

    def rgb(self) -> Tuple[int, int, int]:
        return self.r, self.g, self.b

    def hex(self) -> str:
        return f"#{int(self):06x}"

    def __str__(self) -> str:
        return self.hex()

    def __repr__(self) -> str:
        return f"Color({self.hex()})"


@dataclass(frozen=True)
class ResultRecord:
    """Top-3 colours of one image; rank 0 is the most frequent."""

    url: str
    colors: Tuple[Color, Color, Color]

    def __post_init__(self):
        if len(self.colors) != 3:
            raise ValueError(f"expected exactly 3 colors, got {len(self.colors)}")
        object.__setattr__(self, "colors", tuple(Color(c) for c in self.colors))

    def line(self) -> str:
        """CSV line: "url","#rrggbb","#rrggbb","#rrggbb" plus newline."""
        c1, c2, c3 = self.colors
        return f'"{self.url}","{c1.hex()}","{c2.hex()}","{c3.hex()}"\n'

    @staticmethod
    def header() -> str:
        return HEADER
