from formcoach.coach.feedback import FeedbackGate, FeedbackState, SpeechRequest
from formcoach.coach.rule_store import DEFAULT_RULE_SPEC, ExerciseRuleSpec, RuleSpecError, RuleStore
from formcoach.coach.rules import Evaluation, Issue, RuleResult, evaluate
from formcoach.coach.session import CoachSession, FrameEffects, SessionState

__all__ = [
    "DEFAULT_RULE_SPEC",
    "CoachSession",
    "Evaluation",
    "ExerciseRuleSpec",
    "FeedbackGate",
    "FeedbackState",
    "FrameEffects",
    "Issue",
    "RuleResult",
    "RuleSpecError",
    "RuleStore",
    "SessionState",
    "SpeechRequest",
    "evaluate",
]
