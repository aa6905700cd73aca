"""Per-athlete coaching session: one pipeline pass per pose frame.

``keypoints -> smoothing -> calibration -> metrics -> reps -> rules -> feedback``

All mutable state lives in :class:`SessionState`; each stage operates on its own part
of it, so a session can be inspected or rebuilt without touching the others.
"""
from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, List, Optional, Tuple

from loguru import logger

from formcoach.core.config import CoachConfig
from formcoach.vision.keypoints import FrameGeometry, parse_keypoints
from formcoach.coach.calibration import BaselineCalibrator, CalibrationStatus
from formcoach.coach.feedback import FeedbackGate, FeedbackState, SpeechRequest
from formcoach.coach.metrics import FrameMetrics, Incomplete, MetricExtractor
from formcoach.coach.reps import RepCounter, RepEvent, RepState
from formcoach.coach.rule_store import ExerciseRuleSpec
from formcoach.coach.rules import Evaluation, Issue, evaluate, pass_message
from formcoach.coach.smoothing import KeypointSmoother

WAITING_TEXT = "Waiting for full body in frame..."

RepListener = Callable[[RepEvent], None]


def monotonic_ms() -> float:
    return time.monotonic() * 1000.0


@dataclass
class SessionState:
    smoother: KeypointSmoother = field(default_factory=KeypointSmoother)
    calibrator: BaselineCalibrator = field(default_factory=BaselineCalibrator)
    reps: RepState = field(default_factory=RepState)
    feedback: FeedbackState = field(default_factory=FeedbackState)
    frames_seen: int = 0
    last_frame_at: Optional[float] = None

    @classmethod
    def for_config(cls, config: CoachConfig) -> "SessionState":
        return cls(
            smoother=KeypointSmoother(config.smoothing_window),
            calibrator=BaselineCalibrator(config.calibration_frames),
        )


@dataclass
class FrameEffects:
    status: str
    status_text: str
    rep_count: int
    calibration: CalibrationStatus
    metrics: Optional[FrameMetrics] = None
    evaluation: Optional[Evaluation] = None
    issues: List[Issue] = field(default_factory=list)
    rep_event: Optional[RepEvent] = None
    speech: Optional[SpeechRequest] = None
    missing: Tuple[str, ...] = ()

    @property
    def top_issue(self) -> Optional[Issue]:
        return self.issues[0] if self.issues else None

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "status_text": self.status_text,
            "rep_count": self.rep_count,
            "calibration": {
                "calibrated": self.calibration.calibrated,
                "collected": self.calibration.collected,
                "required": self.calibration.required,
                "baseline": self.calibration.baseline,
            },
            "metrics": self.metrics.as_bag() if self.metrics else None,
            "evaluation": self.evaluation.to_dict() if self.evaluation else None,
            "issues": [{"id": i.rule_id, "severity": i.severity, "message": i.message} for i in self.issues],
            "rep_event": {"count": self.rep_event.count} if self.rep_event else None,
            "speech": (
                {"text": self.speech.text, "issue_id": self.speech.issue_id, "forced": self.speech.forced}
                if self.speech
                else None
            ),
            "missing": list(self.missing),
        }


class CoachSession:
    """Drives the coaching pipeline for one athlete and one exercise."""

    def __init__(
        self,
        spec: ExerciseRuleSpec,
        config: Optional[CoachConfig] = None,
        *,
        clock: Optional[Callable[[], float]] = None,
        session_id: Optional[str] = None,
        rules_fallback: bool = False,
    ) -> None:
        self.id = session_id or uuid.uuid4().hex
        self.spec = spec
        self.rules_fallback = rules_fallback
        self.config = config or CoachConfig()
        self.clock = clock or monotonic_ms
        self._listeners: List[RepListener] = []
        self._extractor = MetricExtractor(self.config)
        self._attach(SessionState.for_config(self.config))

    def _attach(self, state: SessionState) -> None:
        self.state = state
        self._reps = RepCounter(self.config, state.reps)
        self._gate = FeedbackGate(self.config, state.feedback)
        self._last: Optional[FrameEffects] = None

    @property
    def rep_count(self) -> int:
        return self.state.reps.count

    @property
    def calibrated(self) -> bool:
        return self.state.calibrator.calibrated

    def add_rep_listener(self, listener: RepListener) -> None:
        self._listeners.append(listener)

    def _notify(self, event: RepEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as exc:
                logger.warning("Rep listener failed: {}", exc)

    def on_frame(
        self,
        keypoints: Iterable[Any],
        geometry: Optional[FrameGeometry] = None,
        now_ms: Optional[float] = None,
    ) -> FrameEffects:
        now = self.clock() if now_ms is None else float(now_ms)
        state = self.state
        state.frames_seen += 1
        state.last_frame_at = now

        landmarks = self._extractor.locate(parse_keypoints(keypoints), geometry)
        if isinstance(landmarks, Incomplete):
            calibrator = state.calibrator
            if self.config.reset_calibration_on_interrupt and not calibrator.calibrated and calibrator.collected:
                logger.info("Body left the frame during calibration; restarting calibration")
                calibrator.reset()
                state.smoother.reset()
            return self._remember(
                FrameEffects(
                    status="waiting_for_body",
                    status_text=WAITING_TEXT,
                    rep_count=self.rep_count,
                    calibration=calibrator.status(),
                    missing=landmarks.missing,
                )
            )

        smoothed = state.smoother.push(landmarks.hip[1])
        calibration = state.calibrator.observe(smoothed)
        if not calibration.calibrated:
            return self._remember(
                FrameEffects(
                    status="calibrating",
                    status_text=calibration.message,
                    rep_count=self.rep_count,
                    calibration=calibration,
                )
            )

        metrics = self._extractor.compute(landmarks, smoothed, calibration.baseline)
        evaluation = evaluate(metrics, self.spec)
        # a frame below the exercise's min confidence never moves the rep state
        rep_event = None
        if not evaluation.low_confidence:
            rep_event = self._reps.update(
                metrics.smoothed_hip_y,
                metrics.depth_threshold,
                metrics.up_threshold,
                metrics.confidence,
                now,
            )
        decision = self._gate.decide(evaluation, now, pass_message(evaluation, self.spec))

        if evaluation.low_confidence:
            status = "low_confidence"
        elif evaluation.issues:
            status = "form_issue"
        else:
            status = "good_form"

        effects = FrameEffects(
            status=status,
            status_text=decision.status_text,
            rep_count=self.rep_count,
            calibration=calibration,
            metrics=metrics,
            evaluation=evaluation,
            issues=decision.issues,
            rep_event=rep_event,
            speech=decision.speech,
        )
        if rep_event is not None:
            self._notify(rep_event)
        return self._remember(effects)

    def _remember(self, effects: FrameEffects) -> FrameEffects:
        self._last = effects
        return effects

    def snapshot(self) -> dict:
        """Latest status, metrics and prioritized issues; reading has no side effects."""
        data = {
            "session_id": self.id,
            "exercise_id": self.spec.id,
            "rules_fallback": self.rules_fallback,
            "frames_seen": self.state.frames_seen,
            "rep_count": self.rep_count,
            "phase": self.state.reps.phase,
            "calibrated": self.calibrated,
        }
        last = self._last
        if last is None:
            data.update(status="waiting_for_body", status_text=WAITING_TEXT, metrics=None, issues=[])
            return data
        data.update(
            status=last.status,
            status_text=last.status_text,
            metrics=last.metrics.as_bag() if last.metrics else None,
            issues=[{"id": i.rule_id, "severity": i.severity, "message": i.message} for i in last.issues],
        )
        return data

    def reset(self) -> None:
        """Start over: new calibration, zero reps, no feedback history."""
        self._attach(SessionState.for_config(self.config))
        logger.info("Session {} reset", self.id)
