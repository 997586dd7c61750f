"""
Voice synthesis via Gemini TTS (generate_content with AUDIO modality).

Returns raw 16-bit LE mono PCM at 24 kHz. The caller streams it to clients.
"""
import base64
import logging
from typing import Optional

from google.genai import types

from config import settings
from models.errors import DispatchFailure
from services.genai_client import get_genai_client

logger = logging.getLogger(__name__)

SAMPLE_RATE = 24000

# Prebuilt Gemini voices handed out to seats in roster order
PLAYER_VOICES = ["Puck", "Kore", "Fenrir", "Aoede", "Leda", "Orus", "Zephyr"]


def voice_for(seat: int) -> str:
    return PLAYER_VOICES[seat % len(PLAYER_VOICES)]


class TTSService:

    async def synthesize(self, text: str, voice: Optional[str] = None) -> Optional[bytes]:
        """PCM audio for `text`, or None when TTS is disabled or unconfigured."""
        if not settings.tts_enabled or not text.strip():
            return None
        client = get_genai_client()
        if client is None:
            return None

        try:
            response = await client.aio.models.generate_content(
                model=settings.tts_model,
                contents=text,
                config=types.GenerateContentConfig(
                    response_modalities=["AUDIO"],
                    speech_config=types.SpeechConfig(
                        voice_config=types.VoiceConfig(
                            prebuilt_voice_config=types.PrebuiltVoiceConfig(
                                voice_name=voice or settings.narrator_voice,
                            )
                        )
                    ),
                    system_instruction="Read the following text aloud exactly as written.",
                ),
            )
        except Exception as exc:
            raise DispatchFailure(f"TTS request failed: {exc}") from exc

        candidates = response.candidates or []
        if not candidates or not candidates[0].content:
            logger.warning(f"TTS returned no audio for {text[:40]}…")
            return None
        for part in candidates[0].content.parts or []:
            idata = getattr(part, "inline_data", None)
            if not idata or not idata.data:
                continue
            raw = idata.data
            if isinstance(raw, str):
                raw = base64.b64decode(raw)
            return raw
        return None


# Module-level singleton
tts_service = TTSService()
