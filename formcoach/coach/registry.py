"""In-memory registry of live coaching sessions and their speech dispatchers."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from loguru import logger

from formcoach.core.config import CoachConfig, Settings
from formcoach.voice.speech import SpeechDispatcher, SpeechProvider
from formcoach.coach.rule_store import RuleStore
from formcoach.coach.session import CoachSession


@dataclass
class SessionEntry:
    session: CoachSession
    dispatcher: SpeechDispatcher


class SessionRegistry:
    def __init__(
        self,
        store: RuleStore,
        provider: SpeechProvider,
        config: Optional[CoachConfig] = None,
        default_exercise: str = "back_squat",
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self.store = store
        self.provider = provider
        self.config = config or CoachConfig()
        self.default_exercise = default_exercise
        self.clock = clock
        self._entries: Dict[str, SessionEntry] = {}

    @classmethod
    def from_settings(cls, settings: Settings, provider: SpeechProvider) -> "SessionRegistry":
        return cls(
            store=RuleStore(settings.rules_dir),
            provider=provider,
            config=CoachConfig.from_settings(settings),
            default_exercise=settings.default_exercise,
        )

    def create(self, exercise_id: Optional[str] = None) -> CoachSession:
        exercise_id = exercise_id or self.default_exercise
        spec, fallback = self.store.resolve(exercise_id)
        session = CoachSession(spec, self.config, clock=self.clock, rules_fallback=fallback)
        self._entries[session.id] = SessionEntry(
            session=session,
            dispatcher=SpeechDispatcher(self.provider, self.config, clock=self.clock),
        )
        logger.info("Session {} created for {} (fallback rules: {})", session.id, exercise_id, fallback)
        return session

    def get(self, session_id: str) -> Optional[SessionEntry]:
        return self._entries.get(session_id)

    def remove(self, session_id: str) -> bool:
        entry = self._entries.pop(session_id, None)
        if entry is not None:
            logger.info("Session {} closed after {} reps", session_id, entry.session.rep_count)
        return entry is not None

    def ids(self) -> List[str]:
        return list(self._entries)

    def clear(self) -> None:
        self._entries.clear()
