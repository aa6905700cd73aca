"""Text-to-speech proxy.

POST /tts {"text": "..."} returns ``audio/mpeg`` bytes from the provider. Repeats of the
same phrase by the same client are limited; a rejection is a 429 carrying both a
``Retry-After`` header and ``next_allowed_in_ms`` in the envelope data.
"""
from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import Response
from loguru import logger

from formcoach.api import deps
from formcoach.api.schemas import TtsInput, error_response
from formcoach.voice.speech import SpeechAudio, SpeechRateLimited

router = APIRouter()


@router.post("/tts")
async def tts(payload: TtsInput, request: Request):
    text = (payload.text or "").strip()
    if not text:
        return error_response(400, "missing_text")
    provider = deps.speech_provider
    if not provider.available:
        return error_response(501, "tts_unavailable")

    client = request.client.host if request.client else "unknown"
    decision = deps.tts_limiter.check(client, text)
    if not decision.allowed:
        headers = {"Retry-After": str(decision.retry_after_s)} if decision.retry_after_s else None
        logger.info("tts limited client={} error={}", client, decision.error)
        return error_response(
            429, decision.error, data={"next_allowed_in_ms": decision.next_allowed_in_ms}, headers=headers
        )

    result = await provider.synthesize(text, voice_id=payload.voice_id, model_id=payload.model_id)
    if isinstance(result, SpeechAudio):
        return Response(content=result.content, media_type=result.content_type)
    if isinstance(result, SpeechRateLimited):
        retry_ms = result.retry_after_ms
        headers = {"Retry-After": str(max(1, int(-(-retry_ms // 1000))))} if retry_ms else None
        return error_response(429, "rate_limited", data={"next_allowed_in_ms": retry_ms}, headers=headers)
    return error_response(502, "tts_failed", data={"reason": result.reason})
