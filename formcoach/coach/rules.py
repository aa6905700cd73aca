"""Rule evaluation against a per-frame metrics bag.

Rules are compiled from :class:`RuleDefinition` documents into one of a closed set of
variants. Unknown rule types are kept as :class:`UnknownRule` and always pass so that a
newer rule document never breaks an older engine.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Union

from formcoach.coach.metrics import FrameMetrics
from formcoach.coach.rule_store import ExerciseRuleSpec, RuleDefinition

CONFIDENCE_RULE_ID = "confidence"

DEFAULT_MIN_RATIO = 0.35
DEFAULT_MAX_DEG = 25.0
DEFAULT_MIN_DEG = 80.0

FALLBACK_MESSAGES = {
    "pass": "ok",
    "ratio": "Depth insufficient",
    "max": "Value exceeds max",
    "min": "Value below min",
    CONFIDENCE_RULE_ID: "Low keypoint confidence",
}

# Accepted spellings for metric names found in rule documents
METRIC_ALIASES: Dict[str, str] = {
    "torsoAngleDeg": "torso_angle_deg",
    "torso_angle": "torso_angle_deg",
    "kneeAngle": "knee_angle_deg",
    "kneeAngleDeg": "knee_angle_deg",
    "knee_angle": "knee_angle_deg",
    "hipY": "hip_y",
    "kneeY": "knee_y",
    "smoothedHipY": "smoothed_hip_y",
    "hipDisplacement": "hip_displacement",
    "kneeDisplacement": "knee_displacement",
}


@dataclass(frozen=True)
class RatioRule:
    id: str
    severity: str
    numerator: str = "hip_displacement"
    denominator: str = "knee_displacement"
    min_ratio: float = DEFAULT_MIN_RATIO


@dataclass(frozen=True)
class MaxRule:
    id: str
    severity: str
    metric: str = "torso_angle_deg"
    max_value: float = DEFAULT_MAX_DEG


@dataclass(frozen=True)
class MinRule:
    id: str
    severity: str
    metric: str = "knee_angle_deg"
    min_value: float = DEFAULT_MIN_DEG


@dataclass(frozen=True)
class UnknownRule:
    id: str
    type: str


Rule = Union[RatioRule, MaxRule, MinRule, UnknownRule]


@dataclass
class RuleResult:
    rule_id: str
    ok: bool
    severity: str
    message: str
    value: Optional[float] = None


@dataclass(frozen=True)
class Issue:
    rule_id: str
    severity: str
    message: str


@dataclass
class Evaluation:
    valid: bool
    results: List[RuleResult] = field(default_factory=list)
    issues: List[Issue] = field(default_factory=list)

    @property
    def low_confidence(self) -> bool:
        return len(self.issues) == 1 and self.issues[0].rule_id == CONFIDENCE_RULE_ID

    def to_dict(self) -> dict:
        return {
            "valid": self.valid,
            "results": [
                {"id": r.rule_id, "ok": r.ok, "severity": r.severity, "message": r.message, "value": r.value}
                for r in self.results
            ],
            "issues": [{"id": i.rule_id, "severity": i.severity, "message": i.message} for i in self.issues],
        }


def canonical_metric(name: str) -> str:
    return METRIC_ALIASES.get(name, name)


def _number(params: Mapping[str, Any], *keys: str, default: float) -> float:
    for key in keys:
        value = params.get(key)
        if value is not None:
            return float(value)
    return default


def compile_rule(definition: RuleDefinition) -> Rule:
    p = definition.params
    kind = definition.type.strip().lower()
    if kind == "ratio":
        return RatioRule(
            id=definition.id,
            severity=definition.severity,
            numerator=canonical_metric(str(p.get("numerator", "hip_displacement"))),
            denominator=canonical_metric(str(p.get("denominator", "knee_displacement"))),
            min_ratio=_number(p, "min_ratio", "minRatio", default=DEFAULT_MIN_RATIO),
        )
    if kind == "max":
        return MaxRule(
            id=definition.id,
            severity=definition.severity,
            metric=canonical_metric(definition.metric or str(p.get("metric", "torso_angle_deg"))),
            max_value=_number(p, "max_deg", "maxDeg", "max", default=DEFAULT_MAX_DEG),
        )
    if kind == "min":
        return MinRule(
            id=definition.id,
            severity=definition.severity,
            metric=canonical_metric(definition.metric or str(p.get("metric", "knee_angle_deg"))),
            min_value=_number(p, "min_deg", "minDeg", "min", default=DEFAULT_MIN_DEG),
        )
    return UnknownRule(id=definition.id, type=definition.type)


def compile_rules(spec: ExerciseRuleSpec) -> List[Rule]:
    return [compile_rule(d) for d in spec.rules]


def metrics_bag(metrics: Union[FrameMetrics, Mapping[str, Any]]) -> Dict[str, float]:
    """Normalize a metrics source into a ``snake_case`` name -> float mapping."""
    if isinstance(metrics, FrameMetrics):
        return metrics.as_bag()
    bag: Dict[str, float] = {}
    for key, value in metrics.items():
        if value is None:
            continue
        try:
            bag[canonical_metric(str(key))] = float(value)
        except (TypeError, ValueError):
            continue
    return bag


def _check(rule: Rule, bag: Mapping[str, float]) -> tuple[bool, Optional[float], str]:
    """Return ``(ok, observed value, fallback failure message)`` for one rule."""
    if isinstance(rule, RatioRule):
        denominator = bag.get(rule.denominator, 0.0)
        ratio = bag.get(rule.numerator, 0.0) / denominator if denominator else 0.0
        return ratio >= rule.min_ratio, ratio, FALLBACK_MESSAGES["ratio"]
    if isinstance(rule, MaxRule):
        value = bag.get(rule.metric, 0.0)
        return value <= rule.max_value, value, FALLBACK_MESSAGES["max"]
    if isinstance(rule, MinRule):
        value = bag.get(rule.metric, 0.0)
        return value >= rule.min_value, value, FALLBACK_MESSAGES["min"]
    return True, None, FALLBACK_MESSAGES["pass"]


def evaluate(metrics: Union[FrameMetrics, Mapping[str, Any]], spec: ExerciseRuleSpec) -> Evaluation:
    """Evaluate every rule of ``spec`` in declaration order.

    A confidence below ``spec.min_confidence`` short-circuits to a single failing
    ``confidence`` issue. ``valid`` is False only when some issue has severity ``fail``.
    """
    bag = metrics_bag(metrics)

    confidence = bag.get("confidence", 0.0)
    if confidence < spec.min_confidence:
        message = spec.message_for(CONFIDENCE_RULE_ID, "fail") or FALLBACK_MESSAGES[CONFIDENCE_RULE_ID]
        result = RuleResult(CONFIDENCE_RULE_ID, False, "fail", message, confidence)
        return Evaluation(valid=False, results=[result], issues=[Issue(CONFIDENCE_RULE_ID, "fail", message)])

    results: List[RuleResult] = []
    issues: List[Issue] = []
    for rule in compile_rules(spec):
        if isinstance(rule, UnknownRule):
            results.append(RuleResult(rule.id, True, "pass", "unknown_rule_skipped"))
            continue
        ok, value, fallback = _check(rule, bag)
        severity = "pass" if ok else rule.severity
        message = spec.message_for(rule.id, severity) or (FALLBACK_MESSAGES["pass"] if ok else fallback)
        results.append(RuleResult(rule.id, ok, severity, message, value))
        if not ok and severity in ("warn", "fail"):
            issues.append(Issue(rule.id, severity, message))

    valid = not any(issue.severity == "fail" for issue in issues)
    return Evaluation(valid=valid, results=results, issues=issues)


def pass_message(evaluation: Evaluation, spec: ExerciseRuleSpec) -> Optional[str]:
    """First configured ``pass`` message among passing rules, if any."""
    for result in evaluation.results:
        if result.ok:
            message = spec.message_for(result.rule_id, "pass")
            if message:
                return message
    return None
