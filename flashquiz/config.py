from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path

from flashquiz.engine import SessionConfig

CONFIG_PATH = Path(__file__).resolve().parent.parent / "config.json"

DEFAULTS = {
    "fuzzy_threshold": 0.4,
    "shuffle_enabled": False,
    "practice_count": 2,
    "auto_speak": False,
    "quiz_timer_seconds": 20,
    "fetch_from_db": False,
    "tts_provider": "edge-tts",
    "tts_voice": "en-GB-SoniaNeural",
    "quiz_files": [],
    "audio_cache_dir": "audio_cache",
    "image_dir": "images",
    "db_path": "quiz.db",
}


@dataclass
class Settings:
    fuzzy_threshold: float = DEFAULTS["fuzzy_threshold"]
    shuffle_enabled: bool = DEFAULTS["shuffle_enabled"]
    practice_count: int = DEFAULTS["practice_count"]
    auto_speak: bool = DEFAULTS["auto_speak"]
    quiz_timer_seconds: int = DEFAULTS["quiz_timer_seconds"]
    fetch_from_db: bool = DEFAULTS["fetch_from_db"]
    tts_provider: str = DEFAULTS["tts_provider"]
    tts_voice: str = DEFAULTS["tts_voice"]
    quiz_files: list[str] = field(default_factory=lambda: list(DEFAULTS["quiz_files"]))
    audio_cache_dir: str = DEFAULTS["audio_cache_dir"]
    image_dir: str = DEFAULTS["image_dir"]
    db_path: str = DEFAULTS["db_path"]

    @property
    def project_root(self) -> Path:
        return Path(__file__).resolve().parent.parent

    @property
    def data_dir(self) -> Path:
        return self.project_root / "data"

    @property
    def db_full_path(self) -> Path:
        return self.project_root / self.db_path

    @property
    def audio_cache_full_path(self) -> Path:
        return self.project_root / self.audio_cache_dir

    @property
    def image_full_path(self) -> Path:
        return self.project_root / self.image_dir

    def resolved_quiz_files(self) -> list[Path]:
        if self.quiz_files:
            root = self.project_root
            return [root / f for f in self.quiz_files]
        return sorted(self.data_dir.glob("*.md"))

    def session_config(self) -> SessionConfig:
        """Snapshot of the quiz knobs handed to a new session."""
        return SessionConfig(
            threshold=float(self.fuzzy_threshold),
            shuffle_enabled=bool(self.shuffle_enabled),
            practice_count=int(self.practice_count),
        )

    def to_dict(self) -> dict:
        return {
            "fuzzy_threshold": self.fuzzy_threshold,
            "shuffle_enabled": self.shuffle_enabled,
            "practice_count": self.practice_count,
            "auto_speak": self.auto_speak,
            "quiz_timer_seconds": self.quiz_timer_seconds,
            "fetch_from_db": self.fetch_from_db,
            "tts_provider": self.tts_provider,
            "tts_voice": self.tts_voice,
            "quiz_files": self.quiz_files,
            "audio_cache_dir": self.audio_cache_dir,
            "image_dir": self.image_dir,
            "db_path": self.db_path,
        }


def load_settings() -> Settings:
    if CONFIG_PATH.exists():
        raw = json.loads(CONFIG_PATH.read_text())
        # Migrate: threshold -> fuzzy_threshold
        if "threshold" in raw:
            raw.setdefault("fuzzy_threshold", raw["threshold"])
            del raw["threshold"]
        known = {f.name for f in Settings.__dataclass_fields__.values()}
        filtered = {k: v for k, v in raw.items() if k in known}
        return Settings(**filtered)
    return Settings()


def save_settings(settings: Settings) -> None:
    CONFIG_PATH.write_text(json.dumps(settings.to_dict(), indent=4) + "\n")
