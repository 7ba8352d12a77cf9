"""Geo-coordinate value type."""

from dataclasses import dataclass
from typing import List


@dataclass(frozen=True)
class Point:
    """A two dimensional geo-coordinate.

    Stored as the ordered sequence [x, y].

    Example:
        home = Point(13.4, 52.5)
        home.to_list()  # [13.4, 52.5]
    """

    x: float
    y: float

    def to_list(self) -> List[float]:
        return [float(self.x), float(self.y)]
