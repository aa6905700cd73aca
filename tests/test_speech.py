from __future__ import annotations

import asyncio
from typing import List

import httpx
import pytest

from formcoach.coach.feedback import SpeechRequest
from formcoach.core.config import CoachConfig, Settings
from formcoach.voice import speech as speech_module
from formcoach.voice.speech import (
    ElevenLabsProvider,
    SpeechAudio,
    SpeechDispatcher,
    SpeechFailed,
    SpeechRateLimited,
    decode_tts_response,
)

from conftest import FakeClock


class _ScriptedProvider:
    def __init__(self, results: List[object]):
        self.results = list(results)
        self.calls: List[str] = []

    async def synthesize(self, text: str):
        self.calls.append(text)
        result = self.results.pop(0) if self.results else SpeechAudio(b"mp3")
        if isinstance(result, Exception):
            raise result
        return result


class _BlockingProvider:
    def __init__(self):
        self.release = asyncio.Event()
        self.calls: List[str] = []

    async def synthesize(self, text: str):
        self.calls.append(text)
        await self.release.wait()
        return SpeechAudio(b"mp3")


def test_decode_rate_limit_hints():
    assert decode_tts_response(429, {"Retry-After": "3"}, b"").retry_after_ms == 3000.0
    limited = decode_tts_response(429, {}, b'{"error": "rate_limited", "next_allowed_in_ms": 4200}')
    assert isinstance(limited, SpeechRateLimited) and limited.retry_after_ms == 4200.0
    nested = decode_tts_response(429, {}, b'{"success": false, "data": {"next_allowed_in_ms": 900}}')
    assert nested.retry_after_ms == 900.0
    assert decode_tts_response(429, {}, b"slow down").retry_after_ms is None


def test_decode_audio_and_failures():
    audio = decode_tts_response(200, {"content-type": "audio/mpeg"}, b"ID3")
    assert audio == SpeechAudio(b"ID3", "audio/mpeg")
    assert decode_tts_response(200, {"content-type": "application/json"}, b"{}") == SpeechFailed(
        "unexpected_content_type", 200
    )
    assert decode_tts_response(500, {}, b"oops").reason == "http_500"


@pytest.mark.asyncio
async def test_dispatcher_speaks_and_returns_audio():
    provider = _ScriptedProvider([SpeechAudio(b"abc")])
    dispatcher = SpeechDispatcher(provider, clock=FakeClock())
    outcome = await dispatcher.speak(SpeechRequest(text="Go deeper", issue_id="depth"))
    assert outcome.spoken
    assert outcome.audio.content == b"abc"
    assert dispatcher.state.in_flight == 0


@pytest.mark.asyncio
async def test_only_one_request_in_flight():
    provider = _BlockingProvider()
    dispatcher = SpeechDispatcher(provider, clock=FakeClock())
    first = asyncio.create_task(dispatcher.speak("Go deeper"))
    await asyncio.sleep(0)
    second = await dispatcher.speak("Chest up", force=True)
    assert second.status == "skipped" and second.reason == "in_flight"
    same = await dispatcher.speak("Go deeper", force=True)
    assert same.reason == "already_playing"
    provider.release.set()
    assert (await first).spoken
    assert provider.calls == ["Go deeper"]
    assert dispatcher.state.in_flight == 0


@pytest.mark.asyncio
async def test_rate_limit_sets_global_and_phrase_backoff():
    clock = FakeClock()
    provider = _ScriptedProvider([SpeechRateLimited(retry_after_ms=12000.0)])
    dispatcher = SpeechDispatcher(provider, clock=clock)
    outcome = await dispatcher.speak("Go deeper")
    assert outcome.status == "rate_limited"
    assert dispatcher.state.backoff_until == 12000.0
    assert dispatcher.state.phrase_backoff["Go deeper"] == 12000.0

    clock.t = 5000.0
    assert (await dispatcher.speak("Chest up", force=True)).reason == "backoff"
    clock.t = 12000.0
    assert (await dispatcher.speak("Chest up")).spoken


@pytest.mark.asyncio
async def test_rate_limit_without_hint_uses_default_backoff():
    clock = FakeClock(1000.0)
    dispatcher = SpeechDispatcher(_ScriptedProvider([SpeechRateLimited()]), clock=clock)
    await dispatcher.speak("Go deeper")
    assert dispatcher.state.backoff_until == 9000.0


@pytest.mark.asyncio
async def test_short_hint_never_shortens_default_backoff():
    clock = FakeClock()
    dispatcher = SpeechDispatcher(_ScriptedProvider([SpeechRateLimited(retry_after_ms=500.0)]), clock=clock)
    await dispatcher.speak("Go deeper")
    assert dispatcher.state.backoff_until == 8000.0


@pytest.mark.asyncio
async def test_global_gap_and_duplicate_debounce():
    clock = FakeClock()
    dispatcher = SpeechDispatcher(_ScriptedProvider([]), CoachConfig(global_soft_request_ms=0.0), clock=clock)
    assert (await dispatcher.speak("Go deeper")).spoken
    clock.t = 1000.0
    assert (await dispatcher.speak("Go deeper")).reason == "duplicate"
    assert (await dispatcher.speak("Go deeper", force=True)).spoken
    clock.t = 2600.0
    assert (await dispatcher.speak("Go deeper")).spoken

    gapped = SpeechDispatcher(_ScriptedProvider([]), clock=clock)
    assert (await gapped.speak("Go deeper")).spoken
    clock.t = 3000.0
    assert (await gapped.speak("Chest up")).reason == "global_gap"
    assert (await gapped.speak("Chest up", force=True)).spoken


@pytest.mark.asyncio
async def test_provider_exception_is_contained():
    dispatcher = SpeechDispatcher(_ScriptedProvider([RuntimeError("socket closed")]), clock=FakeClock())
    outcome = await dispatcher.speak("Go deeper")
    assert outcome.status == "failed"
    assert outcome.reason == "provider_error"
    assert dispatcher.state.in_flight == 0


@pytest.mark.asyncio
async def test_disabled_dispatcher_skips():
    dispatcher = SpeechDispatcher(_ScriptedProvider([]), CoachConfig(max_concurrent_tts=0), clock=FakeClock())
    assert (await dispatcher.speak("Go deeper")).reason == "tts_disabled"


class _FakeResponse:
    def __init__(self, status_code: int, content: bytes, headers: dict):
        self.status_code = status_code
        self.content = content
        self.headers = headers
        self.text = content.decode("utf-8", "ignore")


class _FakeAsyncClient:
    def __init__(self, queue: List[object], sent: List[dict]):
        self._queue = queue
        self._sent = sent

    async def __aenter__(self) -> "_FakeAsyncClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        return None

    async def post(self, url: str, headers: dict | None = None, json: dict | None = None):
        self._sent.append({"url": url, "headers": headers, "json": json})
        item = self._queue.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


def _patch_client(monkeypatch, queue: List[object]) -> List[dict]:
    sent: List[dict] = []

    def _make_client(*args, **kwargs):
        return _FakeAsyncClient(queue, sent)

    monkeypatch.setattr(speech_module.httpx, "AsyncClient", _make_client)
    return sent


@pytest.mark.asyncio
async def test_elevenlabs_posts_text_and_decodes_audio(monkeypatch):
    sent = _patch_client(monkeypatch, [_FakeResponse(200, b"ID3data", {"content-type": "audio/mpeg"})])
    provider = ElevenLabsProvider(Settings(), api_key="secret")
    result = await provider.synthesize("Go deeper", voice_id="voice123")
    assert result == SpeechAudio(b"ID3data", "audio/mpeg")
    assert sent[0]["url"].endswith("/text-to-speech/voice123")
    assert sent[0]["headers"]["xi-api-key"] == "secret"
    assert sent[0]["json"]["text"] == "Go deeper"


@pytest.mark.asyncio
async def test_elevenlabs_rate_limit_and_transport_errors(monkeypatch):
    _patch_client(
        monkeypatch,
        [_FakeResponse(429, b"{}", {"retry-after": "10"}), httpx.ConnectError("connection refused")],
    )
    provider = ElevenLabsProvider(Settings(), api_key="secret")
    limited = await provider.synthesize("Go deeper")
    assert limited == SpeechRateLimited(retry_after_ms=10000.0)
    failed = await provider.synthesize("Go deeper")
    assert failed == SpeechFailed("transport_error")


@pytest.mark.asyncio
async def test_elevenlabs_without_key_is_unavailable():
    provider = ElevenLabsProvider(Settings(), api_key="")
    assert provider.available is False
    assert await provider.synthesize("hi") == SpeechFailed("tts_unavailable")
