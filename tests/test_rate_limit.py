from __future__ import annotations

from formcoach.voice.rate_limit import PhraseRateLimiter

from conftest import FakeClock


def test_same_phrase_waits_for_cooldown():
    clock = FakeClock()
    limiter = PhraseRateLimiter(cooldown_ms=11000.0, max_repeats=3, clock=clock)
    assert limiter.check("1.2.3.4", "Chest up").allowed
    clock.t = 4000.0
    decision = limiter.check("1.2.3.4", "Chest up")
    assert not decision.allowed
    assert decision.error == "rate_limited_phrase"
    assert decision.next_allowed_in_ms == 7000.0
    assert decision.retry_after_s == 7
    clock.t = 11000.0
    assert limiter.check("1.2.3.4", "chest up ").allowed


def test_phrases_and_clients_are_independent():
    limiter = PhraseRateLimiter(clock=FakeClock())
    assert limiter.check("a", "Chest up").allowed
    assert limiter.check("a", "Go deeper").allowed
    assert limiter.check("b", "Chest up").allowed


def test_repeat_cap():
    clock = FakeClock()
    limiter = PhraseRateLimiter(cooldown_ms=1000.0, max_repeats=3, clock=clock)
    for i in range(3):
        clock.t = i * 2000.0
        assert limiter.check("a", "Chest up").allowed
    clock.t = 100000.0
    decision = limiter.check("a", "Chest up")
    assert not decision.allowed
    assert decision.error == "max_repeats_reached"
    assert decision.retry_after_s is None


def test_capped_phrase_inside_cooldown_reports_the_wait():
    clock = FakeClock()
    limiter = PhraseRateLimiter(cooldown_ms=1000.0, max_repeats=3, clock=clock)
    for i in range(3):
        clock.t = i * 2000.0
        assert limiter.check("a", "Chest up").allowed
    clock.t = 4250.0
    decision = limiter.check("a", "Chest up")
    assert decision.error == "rate_limited_phrase"
    assert decision.next_allowed_in_ms == 750.0
    assert decision.retry_after_s == 1


def test_record_map_is_bounded():
    clock = FakeClock()
    limiter = PhraseRateLimiter(max_entries=2, clock=clock)
    assert limiter.check("a", "one").allowed
    assert limiter.check("a", "two").allowed
    # touching "one" makes "two" the least recently used key
    assert not limiter.check("a", "one").allowed
    assert limiter.check("a", "three").allowed
    assert len(limiter) == 2
    assert limiter.check("a", "two").allowed
    assert not limiter.check("a", "three").allowed


def test_disabled_limiter_allows_everything():
    limiter = PhraseRateLimiter(disabled=True, clock=FakeClock())
    assert all(limiter.check("a", "Chest up").allowed for _ in range(10))
