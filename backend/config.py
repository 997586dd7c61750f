from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional, List


class Settings(BaseSettings):
    gemini_api_key: str = ""
    player_model: str = "gemini-2.5-flash"
    tts_model: str = "gemini-2.5-flash-preview-tts"  # TTS via generate_content
    narrator_voice: str = "Charon"
    tts_enabled: bool = True

    # Table size: one human seat plus AI fill-in up to total_players
    total_players: int = 7
    min_players: int = 5

    # Seconds a human may take to answer before the turn counts as an abstention
    human_input_timeout: float = 30.0
    # Seconds to wait on an AI decision before treating it as no decision
    ai_decision_timeout: float = 20.0

    # Fixed seed makes role shuffles and random fallbacks reproducible
    rng_seed: Optional[int] = None

    # CORS origins — set ALLOWED_ORIGINS env var for production (JSON list)
    allowed_origins: List[str] = [
        "http://localhost:5173",
        "http://localhost:3000",
        "http://127.0.0.1:5173",
    ]
    debug: bool = False

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_ignore_empty=True,
    )


settings = Settings()
