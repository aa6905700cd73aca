from formcoach.voice.rate_limit import LimitDecision, PhraseRateLimiter
from formcoach.voice.speech import (
    ElevenLabsProvider,
    SpeechAudio,
    SpeechDispatcher,
    SpeechFailed,
    SpeechOutcome,
    SpeechRateLimited,
    decode_tts_response,
)

__all__ = [
    "ElevenLabsProvider",
    "LimitDecision",
    "PhraseRateLimiter",
    "SpeechAudio",
    "SpeechDispatcher",
    "SpeechFailed",
    "SpeechOutcome",
    "SpeechRateLimited",
    "decode_tts_response",
]
