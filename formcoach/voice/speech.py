"""Speech synthesis boundary and the single-flight dispatcher in front of it.

Providers return one of :class:`SpeechAudio`, :class:`SpeechRateLimited` or
:class:`SpeechFailed` and never raise. The dispatcher adds the client-side guards:
one request in flight at a time, a global backoff after a rate-limit response, a
per-phrase backoff map and a short debounce for identical back-to-back requests.
"""
from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Mapping, Optional, Protocol, Union

import httpx
from loguru import logger

from formcoach.coach.feedback import SpeechRequest
from formcoach.core.config import CoachConfig, Settings, get_settings

ELEVENLABS_TTS_URL = "https://api.elevenlabs.io/v1/text-to-speech/{voice_id}"


@dataclass(frozen=True)
class SpeechAudio:
    content: bytes
    content_type: str = "audio/mpeg"


@dataclass(frozen=True)
class SpeechRateLimited:
    retry_after_ms: Optional[float] = None
    detail: Optional[str] = None


@dataclass(frozen=True)
class SpeechFailed:
    reason: str
    status_code: Optional[int] = None


SpeechResult = Union[SpeechAudio, SpeechRateLimited, SpeechFailed]


class SpeechProvider(Protocol):
    async def synthesize(self, text: str) -> SpeechResult:  # pragma: no cover - protocol
        ...


def _retry_hint_ms(headers: Mapping[str, str], body: bytes) -> Optional[float]:
    """Suggested delay from ``Retry-After`` (seconds) or a JSON ``next_allowed_in_ms``."""
    retry_after = headers.get("retry-after") or headers.get("Retry-After")
    if retry_after:
        try:
            return max(0.0, float(retry_after) * 1000.0)
        except ValueError:
            pass
    try:
        payload = json.loads(body.decode("utf-8")) if body else None
    except (UnicodeDecodeError, ValueError):
        return None
    if isinstance(payload, dict):
        value = payload.get("next_allowed_in_ms")
        for nested in ("data", "detail"):
            if value is None and isinstance(payload.get(nested), dict):
                value = payload[nested].get("next_allowed_in_ms")
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return max(0.0, float(value))
    return None


def decode_tts_response(status_code: int, headers: Mapping[str, str], body: bytes) -> SpeechResult:
    if status_code == 429:
        return SpeechRateLimited(retry_after_ms=_retry_hint_ms(headers, body))
    if 200 <= status_code < 300:
        if not body:
            return SpeechFailed("empty_audio", status_code)
        content_type = (headers.get("content-type") or headers.get("Content-Type") or "audio/mpeg")
        content_type = content_type.split(";")[0].strip().lower()
        if not (content_type.startswith("audio/") or content_type == "application/octet-stream"):
            return SpeechFailed("unexpected_content_type", status_code)
        return SpeechAudio(content=body, content_type=content_type)
    return SpeechFailed(f"http_{status_code}", status_code)


class ElevenLabsProvider:
    """Text-to-speech over the ElevenLabs REST API."""

    def __init__(self, settings: Optional[Settings] = None, *, api_key: Optional[str] = None) -> None:
        self.settings = settings or get_settings()
        self.api_key = api_key if api_key is not None else self.settings.elevenlabs_api_key

    @property
    def available(self) -> bool:
        return bool(self.api_key)

    async def synthesize(
        self, text: str, voice_id: Optional[str] = None, model_id: Optional[str] = None
    ) -> SpeechResult:
        if not self.api_key:
            return SpeechFailed("tts_unavailable")
        s = self.settings
        url = ELEVENLABS_TTS_URL.format(voice_id=voice_id or s.elevenlabs_voice_id)
        headers = {
            "xi-api-key": self.api_key,
            "Accept": "audio/mpeg",
            "Content-Type": "application/json",
        }
        payload = {
            "text": text,
            "model_id": model_id or s.elevenlabs_tts_model,
            "voice_settings": {
                "stability": s.elevenlabs_voice_stability,
                "similarity_boost": s.elevenlabs_voice_similarity,
            },
        }
        try:
            async with httpx.AsyncClient(timeout=s.tts_timeout_s) as client:
                resp = await client.post(url, headers=headers, json=payload)
        except httpx.HTTPError as exc:
            logger.warning("TTS request failed: {}", exc)
            return SpeechFailed("transport_error")
        result = decode_tts_response(resp.status_code, resp.headers, resp.content)
        if isinstance(result, SpeechRateLimited):
            logger.warning("TTS provider rate limited; retry hint {} ms", result.retry_after_ms)
        elif isinstance(result, SpeechFailed):
            logger.warning("TTS provider error {}: {}", resp.status_code, resp.text[:200])
        return result


@dataclass
class SpeechOutcome:
    status: str  # spoken | skipped | rate_limited | failed
    text: str
    reason: Optional[str] = None
    audio: Optional[SpeechAudio] = None

    @property
    def spoken(self) -> bool:
        return self.status == "spoken"

    def to_dict(self) -> Dict[str, Any]:
        return {"status": self.status, "text": self.text, "reason": self.reason}


@dataclass
class DispatcherState:
    in_flight: int = 0
    current_text: Optional[str] = None
    backoff_until: float = 0.0
    phrase_backoff: Dict[str, float] = field(default_factory=dict)
    last_request_at: Optional[float] = None
    last_batch_key: Optional[str] = None
    last_batch_at: Optional[float] = None


class SpeechDispatcher:
    """Sends speech requests to a provider, at most ``max_concurrent_tts`` at a time.

    Every admission check runs before the first ``await`` so that concurrent callers on
    one event loop observe each other's reservations.
    """

    def __init__(
        self,
        provider: SpeechProvider,
        config: Optional[CoachConfig] = None,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self.provider = provider
        self.config = config or CoachConfig()
        self.clock = clock or (lambda: time.monotonic() * 1000.0)
        self.state = DispatcherState()

    def _admit(self, text: str, forced: bool, now: float) -> Optional[str]:
        cfg = self.config
        s = self.state
        if cfg.max_concurrent_tts <= 0:
            return "tts_disabled"
        if s.in_flight and s.current_text == text:
            return "already_playing"
        if now < s.backoff_until:
            return "backoff"
        if now < s.phrase_backoff.get(text, 0.0):
            return "phrase_backoff"
        if not forced and s.last_request_at is not None and now - s.last_request_at < cfg.global_soft_request_ms:
            return "global_gap"
        if not forced and s.last_batch_key == text and s.last_batch_at is not None:
            if now - s.last_batch_at < cfg.duplicate_batch_window_ms:
                return "duplicate"
        s.last_batch_key = text
        s.last_batch_at = now
        if s.in_flight >= cfg.max_concurrent_tts:
            return "in_flight"
        return None

    async def speak(self, request: Union[SpeechRequest, str], *, force: bool = False) -> SpeechOutcome:
        if isinstance(request, SpeechRequest):
            text, forced = request.text, request.forced or force
        else:
            text, forced = request, force
        text = (text or "").strip()
        if not text:
            return SpeechOutcome("skipped", text, "empty_text")

        now = self.clock()
        reason = self._admit(text, forced, now)
        if reason is not None:
            logger.debug("Speech skipped ({}): {}", reason, text)
            return SpeechOutcome("skipped", text, reason)

        s = self.state
        s.in_flight += 1
        s.current_text = text
        s.last_request_at = now
        logger.debug("Speech request: {}", text)
        try:
            try:
                result = await self.provider.synthesize(text)
            except Exception as exc:
                logger.warning("Speech provider raised: {}", exc)
                result = SpeechFailed("provider_error")
        finally:
            s.in_flight -= 1
            if not s.in_flight:
                s.current_text = None

        if isinstance(result, SpeechAudio):
            return SpeechOutcome("spoken", text, audio=result)
        if isinstance(result, SpeechRateLimited):
            wait_ms = max(self.config.tts_backoff_on_429_ms, result.retry_after_ms or 0.0)
            until = self.clock() + wait_ms
            s.backoff_until = max(s.backoff_until, until)
            s.phrase_backoff[text] = max(s.phrase_backoff.get(text, 0.0), until)
            logger.warning("Speech rate limited; backing off {:.0f} ms", wait_ms)
            return SpeechOutcome("rate_limited", text, "rate_limited")
        return SpeechOutcome("failed", text, result.reason)
