"""Audio Generator Agent - Narration speech for scenes"""

import io
import logging
import wave
from typing import Optional

from .base import StudioAgent

logger = logging.getLogger(__name__)

SAMPLE_RATE = 24000
CHANNELS = 1
SAMPLE_WIDTH = 2  # 16-bit PCM

DEFAULT_VOICE = "alloy"
NATIVE_VOICES = ("alloy", "echo", "fable", "onyx", "nova", "shimmer")

# Studio voice names mapped onto the speech endpoint's voices
VOICE_MAP = {
    "puck": "onyx",
    "charon": "echo",
    "kore": "nova",
    "fenrir": "onyx",
    "zephyr": "alloy",
    "aoede": "shimmer",
}


def normalize_voice(voice: Optional[str]) -> str:
    key = (voice or "").strip().lower()
    if key in NATIVE_VOICES:
        return key
    return VOICE_MAP.get(key, DEFAULT_VOICE)


def pcm_to_wav(pcm: bytes, sample_rate: int = SAMPLE_RATE) -> bytes:
    """Wrap raw little-endian 16-bit mono PCM in a WAV container"""
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wav:
        wav.setnchannels(CHANNELS)
        wav.setsampwidth(SAMPLE_WIDTH)
        wav.setframerate(sample_rate)
        wav.writeframes(pcm)
    return buffer.getvalue()


class AudioGeneratorAgent(StudioAgent):
    """Narration through the AUDIO role; returns WAV bytes"""

    async def narrate(self, text: str, voice: Optional[str] = None) -> bytes:
        if not text.strip():
            return b""
        resolved = normalize_voice(voice)
        pcm = await self._with_retry(
            lambda: self.router.speech(text, resolved),
            label="narration",
        )
        logger.debug(f"Narration: {len(pcm)} PCM bytes (voice {resolved})")
        if pcm[:4] == b"RIFF":
            return pcm
        return pcm_to_wav(pcm)
