"""Exercise rule specifications: schema, file-backed store and built-in fallback.

Rule documents live in ``<rules_dir>/<exercise_id>.json``::

    {
      "id": "back_squat",
      "name": "Back Squat",
      "metrics": {"min_confidence": 0.5},
      "rules": [
        {"id": "depth", "type": "ratio", "params": {"min_ratio": 0.35}, "severity": "warn"},
        {"id": "torso_angle", "type": "max", "metric": "torso_angle_deg", "params": {"max_deg": 25}}
      ],
      "messages": {"depth": {"warn": "Sit a little deeper"}}
    }

A spec is decoded once and treated as immutable for the rest of the session.
"""
from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Tuple

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError

Severity = Literal["pass", "warn", "fail"]

_EXERCISE_ID = re.compile(r"^[A-Za-z0-9_-]+$")


class RuleSpecError(ValueError):
    """Raised when a rule document cannot be decoded."""


class RuleDefinition(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    type: str
    metric: Optional[str] = None
    params: Dict[str, Any] = Field(default_factory=dict)
    severity: Severity = "warn"
    description: Optional[str] = None


class MetricRequirements(BaseModel):
    model_config = ConfigDict(extra="ignore")

    required: List[str] = Field(default_factory=list)
    min_confidence: float = 0.0


class ExerciseRuleSpec(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    id: str
    name: str = ""
    description: Optional[str] = None
    metrics: MetricRequirements = Field(default_factory=MetricRequirements)
    rules: List[RuleDefinition] = Field(default_factory=list)
    messages: Dict[str, Dict[str, str]] = Field(default_factory=dict)

    @property
    def min_confidence(self) -> float:
        return float(self.metrics.min_confidence)

    def message_for(self, rule_id: str, severity: str) -> Optional[str]:
        return (self.messages.get(rule_id) or {}).get(severity)


def parse_rule_spec(data: Any) -> ExerciseRuleSpec:
    """Decode a rule document, raising :class:`RuleSpecError` when it is malformed."""
    try:
        return ExerciseRuleSpec.model_validate(data)
    except ValidationError as exc:
        raise RuleSpecError(str(exc)) from exc


DEFAULT_RULE_SPEC = ExerciseRuleSpec(
    id="default",
    name="Built-in squat rules",
    description="Used when no rule document is available for the requested exercise.",
    metrics=MetricRequirements(min_confidence=0.4),
    rules=[
        RuleDefinition(id="depth_ratio", type="ratio", params={"min_ratio": 0.35}, severity="warn"),
        RuleDefinition(id="torso_angle", type="max", metric="torso_angle_deg", params={"max_deg": 30}, severity="warn"),
    ],
    messages={
        "depth_ratio": {"warn": "Depth insufficient: try lowering your hip until it reaches knee level."},
        "torso_angle": {"warn": "You are leaning forward; keep your chest up."},
    },
)


def is_valid_exercise_id(exercise_id: str) -> bool:
    return bool(exercise_id) and bool(_EXERCISE_ID.match(exercise_id))


class RuleStore:
    """Loads ``<exercise_id>.json`` rule documents from a directory, caching each one."""

    def __init__(self, rules_dir: str | Path) -> None:
        self.rules_dir = Path(rules_dir)
        self._cache: Dict[str, ExerciseRuleSpec] = {}

    def get(self, exercise_id: str) -> Optional[ExerciseRuleSpec]:
        """Return the spec for ``exercise_id`` or ``None`` when the exercise is unknown.

        Raises:
            RuleSpecError: the document exists but is not a valid rule spec.
        """
        exercise_id = (exercise_id or "").strip()
        if not is_valid_exercise_id(exercise_id):
            return None
        if exercise_id in self._cache:
            return self._cache[exercise_id]
        path = self.rules_dir / f"{exercise_id}.json"
        if not path.is_file():
            return None
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise RuleSpecError(f"{path.name}: {exc}") from exc
        spec = parse_rule_spec(data)
        self._cache[exercise_id] = spec
        logger.info("Loaded rule spec {} ({} rules)", exercise_id, len(spec.rules))
        return spec

    def resolve(self, exercise_id: str) -> Tuple[ExerciseRuleSpec, bool]:
        """Return ``(spec, is_fallback)``; never fails for lack of a spec."""
        try:
            spec = self.get(exercise_id)
        except RuleSpecError as exc:
            logger.warning("Invalid rule spec for {}: {}; using built-in rules", exercise_id, exc)
            return DEFAULT_RULE_SPEC, True
        if spec is None:
            logger.warning("No rule spec for exercise '{}'; using built-in rules", exercise_id)
            return DEFAULT_RULE_SPEC, True
        return spec, False

    def available(self) -> List[str]:
        if not self.rules_dir.is_dir():
            return []
        return sorted(p.stem for p in self.rules_dir.glob("*.json"))
