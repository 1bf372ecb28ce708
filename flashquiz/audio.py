"""TTS audio caching for spoken question prompts."""
from __future__ import annotations

import hashlib
import logging
import re
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from flashquiz.db import Database
    from flashquiz.providers.base import TTSProvider

log = logging.getLogger("flashquiz.audio")


def sentence_hash(text: str) -> str:
    return hashlib.sha256(text.encode()).hexdigest()[:16]


def clean_for_speech(text: str) -> str:
    """Strip markdown emphasis so it is not read aloud."""
    clean = re.sub(r"\*\*(.+?)\*\*", r"\1", text)  # bold
    clean = re.sub(r"\*(.+?)\*", r"\1", clean)      # italic
    clean = re.sub(r"`(.+?)`", r"\1", clean)         # inline code
    clean = re.sub(r"_{2,}", "blank", clean)          # fill-in gaps
    return re.sub(r"\s+", " ", clean).strip()


async def get_or_create_audio(
    text: str,
    tts: TTSProvider,
    db: Database,
    cache_dir: Path,
) -> Path | None:
    """Get cached audio or generate new TTS audio."""
    cache_dir.mkdir(parents=True, exist_ok=True)
    h = sentence_hash(text)

    cached_path = db.get_audio_cache(h)
    if cached_path:
        p = Path(cached_path)
        if p.exists():
            return p
        db.delete_audio_cache(h)

    output_path = cache_dir / f"{h}.mp3"
    try:
        await tts.synthesize(text, output_path)
        db.set_audio_cache(h, str(output_path), tts.name())
        return output_path
    except Exception as e:
        log.warning("TTS error (%s): %s", tts.name(), e)
        return None
