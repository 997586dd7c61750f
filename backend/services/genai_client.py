import logging
from typing import Optional

from google import genai

from config import settings

logger = logging.getLogger(__name__)

# Module-level Gemini client cache — created once on first use.
_genai_client: Optional[genai.Client] = None
_missing_key_logged: bool = False


def get_genai_client() -> Optional[genai.Client]:
    """Shared Gemini client, or None when GEMINI_API_KEY is not configured."""
    global _genai_client, _missing_key_logged

    if _genai_client is not None:
        return _genai_client
    if not settings.gemini_api_key:
        if not _missing_key_logged:
            logger.warning("GEMINI_API_KEY not set — AI players fall back to random choices, TTS disabled")
            _missing_key_logged = True
        return None
    _genai_client = genai.Client(api_key=settings.gemini_api_key)
    return _genai_client
