"""Up/down repetition state machine driven by the smoothed hip position."""
from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Optional

from loguru import logger

from formcoach.core.config import CoachConfig


@dataclass(frozen=True)
class RepEvent:
    count: int
    timestamp_ms: float


@dataclass
class RepState:
    is_down: bool = False
    last_rep_at: Optional[float] = None
    count: int = 0
    hip_history: Deque[float] = field(default_factory=deque)
    confidence_history: Deque[float] = field(default_factory=deque)

    @property
    def phase(self) -> str:
        return "down" if self.is_down else "up"

    def clear_history(self) -> None:
        self.hip_history.clear()
        self.confidence_history.clear()


class RepCounter:
    """Counts one repetition per qualifying down -> up cycle.

    Entry into ``down`` requires the trailing hip window to show enough movement
    (max - min >= ``rep_min_amplitude_px``) with enough mean confidence. A rep is
    counted when the hip comes back above the up threshold and at least
    ``rep_min_interval_ms`` has passed since the previous rep. Tracking loss while
    down (confidence gate failing) drops back to ``up`` without counting.
    """

    def __init__(self, config: Optional[CoachConfig] = None, state: Optional[RepState] = None) -> None:
        self.config = config or CoachConfig()
        self.state = state if state is not None else RepState()

    def _push(self, hip_y: float, confidence: float) -> None:
        window = max(1, self.config.rep_history_window)
        s = self.state
        s.hip_history.append(hip_y)
        s.confidence_history.append(confidence)
        while len(s.hip_history) > window:
            s.hip_history.popleft()
        while len(s.confidence_history) > window:
            s.confidence_history.popleft()

    def amplitude(self) -> float:
        h = self.state.hip_history
        return (max(h) - min(h)) if h else 0.0

    def mean_confidence(self) -> float:
        c = self.state.confidence_history
        return sum(c) / len(c) if c else 0.0

    def update(
        self,
        smoothed_hip_y: float,
        depth_threshold: float,
        up_threshold: float,
        confidence: float,
        now_ms: float,
    ) -> Optional[RepEvent]:
        s = self.state
        self._push(smoothed_hip_y, confidence)
        confidence_ok = self.mean_confidence() >= self.config.rep_min_confidence

        if not s.is_down:
            movement_ok = self.amplitude() >= self.config.rep_min_amplitude_px
            if movement_ok and confidence_ok and smoothed_hip_y >= depth_threshold:
                s.is_down = True
            return None

        if not confidence_ok:
            s.is_down = False
            return None

        interval_ok = s.last_rep_at is None or (now_ms - s.last_rep_at) >= self.config.rep_min_interval_ms
        if smoothed_hip_y <= up_threshold and interval_ok:
            s.is_down = False
            s.last_rep_at = now_ms
            s.count += 1
            s.clear_history()
            logger.info("Rep {} counted at {:.0f} ms", s.count, now_ms)
            return RepEvent(count=s.count, timestamp_ms=now_ms)
        return None
