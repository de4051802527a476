"""
Fixed-capacity rolling windows with population statistics.

Each pipeline stage owns its own :class:`RollingWindow`; pushing returns a
new window so stage states stay immutable values.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

import numpy as np


@dataclass(frozen=True)
class RollingWindow:
    capacity: int
    values: Tuple[float, ...] = ()

    def push(self, value: float) -> "RollingWindow":
        """Append *value*, dropping the oldest entries beyond capacity."""
        values = self.values + (float(value),)
        if len(values) > self.capacity:
            values = values[-self.capacity:]
        return RollingWindow(self.capacity, values)

    def cleared(self) -> "RollingWindow":
        return RollingWindow(self.capacity)

    def __len__(self) -> int:
        return len(self.values)

    def as_array(self) -> np.ndarray:
        return np.asarray(self.values, dtype=np.float64)

    def mean(self) -> float:
        if not self.values:
            return 0.0
        return float(np.mean(self.as_array()))

    def variance(self) -> float:
        """Population variance; 0 for fewer than two values."""
        if len(self.values) < 2:
            return 0.0
        return float(np.var(self.as_array()))

    def std(self) -> float:
        return float(np.sqrt(self.variance()))
