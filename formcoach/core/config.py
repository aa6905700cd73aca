"""Core configuration and constants.

Uses environment variables for secrets and configuration. The coaching engine itself only
reads :class:`CoachConfig`, which can be built from :class:`Settings` or constructed directly
in tests.
"""
from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import BaseModel

PACKAGE_DIR = Path(__file__).resolve().parent.parent
DEFAULT_RULES_DIR = PACKAGE_DIR / "exercise_rules"

_TRUTHY = {"1", "true", "yes", "on"}


class Settings(BaseModel):
    """Application settings loaded from environment variables.

    Attributes:
        app_name: App display name.
        environment: Runtime environment.
        api_host: Host for FastAPI server.
        api_port: Port for FastAPI server.
        canvas_width: Width of the coordinate space metrics are normalized into.
        canvas_height: Height of the coordinate space metrics are normalized into.
        rules_dir: Directory holding ``<exercise_id>.json`` rule documents.
        elevenlabs_api_key: API key for the speech synthesis provider.
        log_level: Logging level string.
    """

    app_name: str = "Form Coach"
    environment: Literal["dev", "prod", "test"] = "dev"

    api_host: str = os.getenv("API_HOST", "0.0.0.0")
    api_port: int = int(os.getenv("API_PORT", "8000"))

    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    logs_dir: str = os.getenv("LOGS_DIR", str(PACKAGE_DIR / "data" / "logs"))

    # CORS
    exposed_origins: list[str] = (
        os.getenv("EXPOSED_ORIGINS", "*").split(",") if os.getenv("EXPOSED_ORIGINS") else ["*"]
    )

    # Rendering canvas (metrics are computed in this pixel space)
    canvas_width: int = int(os.getenv("CANVAS_WIDTH", "640"))
    canvas_height: int = int(os.getenv("CANVAS_HEIGHT", "480"))

    # Calibration / smoothing / rep detection
    calibration_frames: int = int(os.getenv("CALIBRATION_FRAMES", "40"))
    smoothing_window: int = int(os.getenv("SMOOTHING_WINDOW", "6"))
    rep_history_window: int = int(os.getenv("REP_HISTORY_WINDOW", "20"))
    depth_fraction: float = float(os.getenv("DEPTH_FRACTION", "0.35"))
    up_fraction: float = float(os.getenv("UP_FRACTION", "0.10"))
    rep_min_amplitude_px: float = float(os.getenv("REP_MIN_AMPLITUDE_PX", "24"))
    rep_min_interval_ms: float = float(os.getenv("REP_MIN_INTERVAL_MS", "1000"))
    rep_min_confidence: float = float(os.getenv("REP_MIN_CONFIDENCE", "0.6"))
    keypoint_min_score: float = float(os.getenv("KEYPOINT_MIN_SCORE", "0.3"))
    reset_calibration_on_interrupt: bool = os.getenv("RESET_CALIBRATION_ON_INTERRUPT", "0").strip().lower() in _TRUTHY

    # Feedback gating
    patience_ms: float = float(os.getenv("COACH_PATIENCE_MS", "1500"))
    per_issue_cooldown_ms: float = float(os.getenv("COACH_PER_ISSUE_COOLDOWN_MS", "8000"))
    max_repeats_per_issue: int = int(os.getenv("COACH_MAX_REPEATS_PER_ISSUE", "3"))
    good_form_reset_ms: float = float(os.getenv("COACH_GOOD_FORM_RESET_MS", "5000"))
    global_soft_request_ms: float = float(os.getenv("COACH_GLOBAL_SOFT_REQUEST_MS", "2000"))
    allow_immediate_for_new_issue: bool = os.getenv("COACH_ALLOW_IMMEDIATE_FOR_NEW_ISSUE", "1").strip().lower() in _TRUTHY
    duplicate_batch_window_ms: float = float(os.getenv("COACH_DUPLICATE_BATCH_WINDOW_MS", "1500"))
    tts_backoff_on_429_ms: float = float(os.getenv("TTS_BACKOFF_ON_429_MS", "8000"))
    max_concurrent_tts: int = int(os.getenv("MAX_CONCURRENT_TTS", "1"))

    # Exercise rules
    rules_dir: str = os.getenv("RULES_DIR", str(DEFAULT_RULES_DIR))
    default_exercise: str = os.getenv("DEFAULT_EXERCISE", "back_squat")

    # Speech synthesis provider (ElevenLabs)
    elevenlabs_api_key: str | None = os.getenv("ELEVENLABS_API_KEY")
    elevenlabs_voice_id: str = os.getenv("ELEVENLABS_VOICE_ID", "21m00Tcm4TlvDq8ikWAM")
    elevenlabs_tts_model: str = os.getenv("ELEVENLABS_TTS_MODEL", "eleven_multilingual_v2")
    elevenlabs_voice_stability: float = float(os.getenv("ELEVENLABS_VOICE_STABILITY", "0.5"))
    elevenlabs_voice_similarity: float = float(os.getenv("ELEVENLABS_VOICE_SIMILARITY", "0.75"))
    tts_timeout_s: float = float(os.getenv("TTS_TIMEOUT_S", "15"))

    # /tts proxy rate limiting
    tts_rate_limit_disabled: bool = os.getenv("TTS_RATE_LIMIT_DISABLED", "0").strip().lower() in _TRUTHY
    tts_per_phrase_cooldown_ms: float = float(os.getenv("TTS_PER_PHRASE_COOLDOWN_MS", "11000"))
    tts_max_repeats_per_phrase: int = int(os.getenv("TTS_MAX_REPEATS_PER_PHRASE", "3"))
    tts_limiter_max_entries: int = int(os.getenv("TTS_LIMITER_MAX_ENTRIES", "4096"))


@lru_cache
def get_settings() -> Settings:
    """Return cached settings instance."""

    return Settings()


@dataclass(frozen=True)
class CoachConfig:
    """Tunables for one coaching session.

    Defaults are the values the coach was tuned with; times are in milliseconds and
    distances in canvas pixels.
    """

    calibration_frames: int = 40
    smoothing_window: int = 6
    rep_history_window: int = 20
    depth_fraction: float = 0.35
    up_fraction: float = 0.10
    rep_min_amplitude_px: float = 24.0
    rep_min_interval_ms: float = 1000.0
    rep_min_confidence: float = 0.6
    keypoint_min_score: float = 0.3
    reset_calibration_on_interrupt: bool = False

    patience_ms: float = 1500.0
    per_issue_cooldown_ms: float = 8000.0
    max_repeats_per_issue: int = 3
    good_form_reset_ms: float = 5000.0
    global_soft_request_ms: float = 2000.0
    allow_immediate_for_new_issue: bool = True
    duplicate_batch_window_ms: float = 1500.0
    tts_backoff_on_429_ms: float = 8000.0
    max_concurrent_tts: int = 1

    canvas_width: int = 640
    canvas_height: int = 480

    @classmethod
    def from_settings(cls, settings: Settings) -> "CoachConfig":
        return cls(
            calibration_frames=settings.calibration_frames,
            smoothing_window=settings.smoothing_window,
            rep_history_window=settings.rep_history_window,
            depth_fraction=settings.depth_fraction,
            up_fraction=settings.up_fraction,
            rep_min_amplitude_px=settings.rep_min_amplitude_px,
            rep_min_interval_ms=settings.rep_min_interval_ms,
            rep_min_confidence=settings.rep_min_confidence,
            keypoint_min_score=settings.keypoint_min_score,
            reset_calibration_on_interrupt=settings.reset_calibration_on_interrupt,
            patience_ms=settings.patience_ms,
            per_issue_cooldown_ms=settings.per_issue_cooldown_ms,
            max_repeats_per_issue=settings.max_repeats_per_issue,
            good_form_reset_ms=settings.good_form_reset_ms,
            global_soft_request_ms=settings.global_soft_request_ms,
            allow_immediate_for_new_issue=settings.allow_immediate_for_new_issue,
            duplicate_batch_window_ms=settings.duplicate_batch_window_ms,
            tts_backoff_on_429_ms=settings.tts_backoff_on_429_ms,
            max_concurrent_tts=settings.max_concurrent_tts,
            canvas_width=settings.canvas_width,
            canvas_height=settings.canvas_height,
        )
