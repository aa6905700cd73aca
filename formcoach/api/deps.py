"""Process-wide singletons shared by the routers."""
from __future__ import annotations

from formcoach.coach.registry import SessionRegistry
from formcoach.core.config import get_settings
from formcoach.voice.rate_limit import PhraseRateLimiter
from formcoach.voice.speech import ElevenLabsProvider

settings = get_settings()

speech_provider = ElevenLabsProvider(settings)

registry = SessionRegistry.from_settings(settings, speech_provider)

tts_limiter = PhraseRateLimiter(
    cooldown_ms=settings.tts_per_phrase_cooldown_ms,
    max_repeats=settings.tts_max_repeats_per_phrase,
    max_entries=settings.tts_limiter_max_entries,
    disabled=settings.tts_rate_limit_disabled,
)
