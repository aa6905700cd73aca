"""Coaching session endpoints.

A client creates a session, then posts one pose frame per tick. Each frame response
carries the status line, metrics, prioritized issues and, when the feedback gate asked
for speech, the dispatch outcome with base64 audio.
"""
from __future__ import annotations

import base64

from fastapi import APIRouter
from loguru import logger

from formcoach.api import deps
from formcoach.api.schemas import Envelope, FrameInput, SessionCreateInput, SimulateInput, error_response
from formcoach.vision.keypoints import FrameGeometry
from formcoach.vision.synthetic import SquatScript, squat_frames

router = APIRouter()


@router.post("/coach/session", response_model=Envelope)
async def create_session(payload: SessionCreateInput) -> Envelope:
    session = deps.registry.create(payload.exercise_id)
    return Envelope(
        success=True,
        data={
            "session_id": session.id,
            "exercise_id": session.spec.id,
            "rules_fallback": session.rules_fallback,
            "calibration_frames": session.config.calibration_frames,
        },
    )


@router.post("/coach/session/{session_id}/frame", response_model=Envelope)
async def session_frame(session_id: str, payload: FrameInput):
    entry = deps.registry.get(session_id)
    if entry is None:
        return error_response(404, "unknown_session")
    geometry = None
    if payload.source_width and payload.source_height:
        cfg = entry.session.config
        geometry = FrameGeometry(payload.source_width, payload.source_height, cfg.canvas_width, cfg.canvas_height)

    effects = entry.session.on_frame(
        [kp.model_dump() for kp in payload.keypoints], geometry, payload.timestamp_ms
    )
    data = effects.to_dict()
    if effects.speech is not None:
        outcome = await entry.dispatcher.speak(effects.speech)
        data["speech_outcome"] = outcome.to_dict()
        if outcome.audio is not None:
            data["audio_b64"] = base64.b64encode(outcome.audio.content).decode("ascii")
            data["audio_content_type"] = outcome.audio.content_type
    return Envelope(success=True, data=data)


@router.get("/coach/session/{session_id}/status", response_model=Envelope)
async def session_status(session_id: str):
    entry = deps.registry.get(session_id)
    if entry is None:
        return error_response(404, "unknown_session")
    return Envelope(success=True, data=entry.session.snapshot())


@router.delete("/coach/session/{session_id}", response_model=Envelope)
async def close_session(session_id: str):
    entry = deps.registry.get(session_id)
    if entry is None:
        return error_response(404, "unknown_session")
    summary = entry.session.snapshot()
    deps.registry.remove(session_id)
    return Envelope(success=True, data={"session_id": session_id, "rep_count": summary["rep_count"]})


@router.post("/coach/session/{session_id}/simulate", response_model=Envelope)
async def simulate_session(session_id: str, payload: SimulateInput):
    """Feed synthetic squat frames through the session (no audio is dispatched)."""
    entry = deps.registry.get(session_id)
    if entry is None:
        return error_response(404, "unknown_session")
    session = entry.session
    script = SquatScript(cycles=payload.cycles, depth=payload.depth, torso_lean_deg=payload.torso_lean_deg)
    last = session.state.last_frame_at
    start = last + script.frame_interval_ms if last is not None else session.clock()

    before = session.rep_count
    frames = 0
    speech_texts = []
    for t, keypoints in squat_frames(script, start_ms=start):
        effects = session.on_frame(keypoints, now_ms=t)
        frames += 1
        if effects.speech is not None:
            speech_texts.append(effects.speech.text)
    logger.info("Simulated {} frames on session {}: {} reps", frames, session_id, session.rep_count - before)
    return Envelope(
        success=True,
        data={
            "frames": frames,
            "rep_count": session.rep_count,
            "reps_added": session.rep_count - before,
            "speech_requests": speech_texts,
            "status": session.snapshot(),
        },
    )
