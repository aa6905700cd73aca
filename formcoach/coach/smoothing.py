from __future__ import annotations

import math
from collections import deque
from typing import Deque, List


class KeypointSmoother:
    """Moving average over the last ``window`` values of a tracked coordinate."""

    def __init__(self, window: int = 6) -> None:
        self.window = max(1, int(window))
        self._values: Deque[float] = deque(maxlen=self.window)

    def push(self, value: float) -> float:
        self._values.append(float(value))
        return math.fsum(self._values) / len(self._values)

    def reset(self) -> None:
        self._values.clear()

    @property
    def values(self) -> List[float]:
        return list(self._values)
