"""Standing-baseline calibration for the tracked hip position."""
from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional

import numpy as np
from loguru import logger


@dataclass
class CalibrationStatus:
    calibrated: bool
    collected: int
    required: int
    baseline: Optional[float] = None

    @property
    def message(self) -> str:
        if self.calibrated:
            return "Calibrated"
        return f"Calibrating... stand still ({self.collected}/{self.required})"


class BaselineCalibrator:
    """Collects ``required_frames`` smoothed samples and freezes their median as the baseline.

    Once frozen the baseline never moves again; only :meth:`reset` starts a new calibration.
    """

    def __init__(self, required_frames: int = 40) -> None:
        self.required_frames = max(1, int(required_frames))
        self._samples: List[float] = []
        self.baseline: Optional[float] = None

    @property
    def calibrated(self) -> bool:
        return self.baseline is not None

    @property
    def collected(self) -> int:
        return self.required_frames if self.calibrated else len(self._samples)

    def status(self) -> CalibrationStatus:
        return CalibrationStatus(
            calibrated=self.calibrated,
            collected=self.collected,
            required=self.required_frames,
            baseline=self.baseline,
        )

    def observe(self, value: float) -> CalibrationStatus:
        if self.baseline is None:
            self._samples.append(float(value))
            if len(self._samples) >= self.required_frames:
                self.baseline = float(np.median(self._samples))
                self._samples = []
                logger.info("Calibration complete: baseline hip y={:.1f}", self.baseline)
        return self.status()

    def reset(self) -> None:
        self._samples = []
        self.baseline = None
