"""Decides which form correction, if any, should be spoken for the current frame.

Per issue the gate tracks when it was first seen, when it was last spoken and how many
times it has been spoken. An issue qualifies for speech once it has persisted for
``patience_ms``, its ``per_issue_cooldown_ms`` has elapsed and it is below
``max_repeats_per_issue``. Requests closer than ``global_soft_request_ms`` to the
previous one are held back unless they are forced (a different issue than the one
last spoken, with ``allow_immediate_for_new_issue`` enabled).

After ``good_form_reset_ms`` of uninterrupted good form all per-issue bookkeeping is
cleared so a corrected mistake can be flagged again if it comes back.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from loguru import logger

from formcoach.core.config import CoachConfig
from formcoach.coach.rules import Evaluation, Issue

GOOD_FORM_TEXT = "Good form"

_SEVERITY_RANK = {"fail": 0, "warn": 1}


@dataclass
class IssueRecord:
    first_seen_at: Optional[float] = None
    last_spoken_at: Optional[float] = None
    spoken_count: int = 0


@dataclass
class FeedbackState:
    issues: Dict[str, IssueRecord] = field(default_factory=dict)
    good_form_since: Optional[float] = None
    last_global_speak_at: Optional[float] = None
    last_spoken_issue: Optional[str] = None

    def record(self, issue_id: str) -> IssueRecord:
        if issue_id not in self.issues:
            self.issues[issue_id] = IssueRecord()
        return self.issues[issue_id]


@dataclass(frozen=True)
class SpeechRequest:
    text: str
    issue_id: Optional[str] = None
    forced: bool = False
    requested_at: Optional[float] = None


@dataclass
class FeedbackDecision:
    status_text: str
    top_issue: Optional[Issue] = None
    speech: Optional[SpeechRequest] = None
    issues: List[Issue] = field(default_factory=list)


def rank_issues(issues: List[Issue]) -> List[Issue]:
    """``fail`` before ``warn``; declaration order within a severity."""
    return sorted(issues, key=lambda i: _SEVERITY_RANK.get(i.severity, 2))


class FeedbackGate:
    def __init__(self, config: Optional[CoachConfig] = None, state: Optional[FeedbackState] = None) -> None:
        self.config = config or CoachConfig()
        self.state = state if state is not None else FeedbackState()

    def decide(self, evaluation: Evaluation, now_ms: float, pass_text: Optional[str] = None) -> FeedbackDecision:
        cfg = self.config
        s = self.state

        if not evaluation.issues:
            if s.good_form_since is None:
                s.good_form_since = now_ms
            elif now_ms - s.good_form_since >= cfg.good_form_reset_ms:
                if s.issues:
                    logger.debug("Sustained good form: clearing {} tracked issues", len(s.issues))
                s.issues.clear()
                s.last_spoken_issue = None
                s.good_form_since = now_ms
            return FeedbackDecision(status_text=pass_text or GOOD_FORM_TEXT)

        s.good_form_since = None
        ranked = rank_issues(evaluation.issues)
        for issue in ranked:
            record = s.record(issue.rule_id)
            if record.first_seen_at is None:
                record.first_seen_at = now_ms

        top = ranked[0]
        decision = FeedbackDecision(status_text=f"Form tip: {top.message}", top_issue=top, issues=ranked)

        record = s.issues[top.rule_id]
        patient = now_ms - record.first_seen_at >= cfg.patience_ms
        cooled = record.last_spoken_at is None or now_ms - record.last_spoken_at >= cfg.per_issue_cooldown_ms
        under_cap = record.spoken_count < cfg.max_repeats_per_issue
        if not (patient and cooled and under_cap):
            return decision

        forced = (
            cfg.allow_immediate_for_new_issue
            and s.last_spoken_issue is not None
            and s.last_spoken_issue != top.rule_id
        )
        gap_ok = s.last_global_speak_at is None or now_ms - s.last_global_speak_at >= cfg.global_soft_request_ms
        if not (forced or gap_ok):
            return decision

        record.last_spoken_at = now_ms
        record.spoken_count += 1
        s.last_global_speak_at = now_ms
        s.last_spoken_issue = top.rule_id
        decision.speech = SpeechRequest(text=top.message, issue_id=top.rule_id, forced=forced, requested_at=now_ms)
        logger.info("Speech requested for {} ({}/{})", top.rule_id, record.spoken_count, cfg.max_repeats_per_issue)
        return decision
