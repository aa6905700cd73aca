"""Per-client, per-phrase limits for the ``/tts`` proxy endpoint."""
from __future__ import annotations

import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Optional

from loguru import logger


@dataclass
class PhraseRecord:
    last_at: float
    count: int = 0


@dataclass(frozen=True)
class LimitDecision:
    allowed: bool
    error: Optional[str] = None
    next_allowed_in_ms: Optional[float] = None

    @property
    def retry_after_s(self) -> Optional[int]:
        if self.next_allowed_in_ms is None:
            return None
        return max(1, int(-(-self.next_allowed_in_ms // 1000)))


class PhraseRateLimiter:
    """Rejects a phrase repeated by the same client within ``cooldown_ms``, then, past the
    cooldown, once it has been said ``max_repeats`` times. Allowed requests are recorded
    immediately, before the provider is called, so a slow provider cannot be hit twice for
    the same phrase.

    At most ``max_entries`` keys are remembered; the least recently used one is evicted first.
    """

    def __init__(
        self,
        cooldown_ms: float = 11000.0,
        max_repeats: int = 3,
        max_entries: int = 4096,
        *,
        disabled: bool = False,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self.cooldown_ms = cooldown_ms
        self.max_repeats = max_repeats
        self.max_entries = max(1, max_entries)
        self.disabled = disabled
        self.clock = clock or (lambda: time.monotonic() * 1000.0)
        self._records: "OrderedDict[str, PhraseRecord]" = OrderedDict()

    @staticmethod
    def key(client: str, text: str) -> str:
        return f"{client}|{text.strip().lower()}"

    def __len__(self) -> int:
        return len(self._records)

    def check(self, client: str, text: str) -> LimitDecision:
        if self.disabled:
            return LimitDecision(True)
        now = self.clock()
        key = self.key(client, text)
        record = self._records.get(key)
        if record is None:
            self._records[key] = PhraseRecord(last_at=now, count=1)
            self._evict()
            return LimitDecision(True)

        self._records.move_to_end(key)
        elapsed = now - record.last_at
        if elapsed < self.cooldown_ms:
            return LimitDecision(False, "rate_limited_phrase", self.cooldown_ms - elapsed)
        if record.count >= self.max_repeats:
            logger.info("TTS phrase cap reached for {}", key)
            return LimitDecision(False, "max_repeats_reached")
        record.last_at = now
        record.count += 1
        return LimitDecision(True)

    def _evict(self) -> None:
        while len(self._records) > self.max_entries:
            key, _ = self._records.popitem(last=False)
            logger.debug("TTS limiter full; forgetting {}", key)
