"""Exercise rule endpoints.

GET /rules/{exercise_id} returns the rule document; POST /validate-rep evaluates a
client-supplied metrics bag against it.
"""
from __future__ import annotations

from fastapi import APIRouter
from loguru import logger

from formcoach.api import deps
from formcoach.api.schemas import Envelope, ValidateRepInput, error_response
from formcoach.coach.rule_store import RuleSpecError
from formcoach.coach.rules import evaluate

router = APIRouter()


def _load(exercise_id: str):
    try:
        spec = deps.registry.store.get(exercise_id)
    except RuleSpecError as exc:
        logger.warning("Rule spec {} is invalid: {}", exercise_id, exc)
        return None, error_response(422, "invalid_rule_spec")
    if spec is None:
        return None, error_response(404, "unknown_exercise")
    return spec, None


@router.get("/rules/{exercise_id}", response_model=Envelope)
async def get_rules(exercise_id: str):
    spec, error = _load(exercise_id)
    if error is not None:
        return error
    return Envelope(success=True, data=spec.model_dump())


@router.post("/validate-rep", response_model=Envelope)
async def validate_rep(payload: ValidateRepInput):
    spec, error = _load(payload.exercise_id)
    if error is not None:
        return error
    evaluation = evaluate(payload.metrics, spec)
    logger.info("validate-rep {} valid={} issues={}", spec.id, evaluation.valid, len(evaluation.issues))
    return Envelope(success=True, data=evaluation.to_dict())
