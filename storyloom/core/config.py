from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    # App
    debug: bool = False
    testing: bool = False
    log_json: bool = True
    log_level: str = "INFO"

    # Database (job status tracking)
    database_url: str = "sqlite+aiosqlite:///./storyloom.db"

    # Celery
    celery_broker_url: str = "redis://localhost:6379/1"
    celery_result_backend: str = "redis://localhost:6379/2"

    # LLM (story rewrite, dialogue, image fit check)
    llm_provider: str = "openai"  # openai, anthropic, gemini, mock
    llm_api_key: Optional[str] = None
    llm_model: str = "gpt-4o-mini"
    llm_timeout: int = 30
    story_rewrite_retries: int = 1

    # Image Generation
    image_provider: str = "gemini"  # gemini, mock
    image_api_key: Optional[str] = None
    image_model: str = "gemini-2.0-flash-exp"
    image_timeout: int = 90
    image_verify_timeout: int = 30
    image_max_retries: int = 2  # extra attempts on retryable provider errors

    # TTS (Text-to-Speech)
    tts_provider: str = "mock"  # mock, google, elevenlabs, gemini
    tts_timeout: int = 60
    gemini_tts_api_key: Optional[str] = None
    gemini_tts_model: str = "gemini-2.5-flash-preview-tts"
    gemini_tts_voice_female: str = "Kore"
    gemini_tts_voice_male: str = "Puck"
    google_tts_api_key: Optional[str] = None
    google_tts_language: str = "en-US"
    google_tts_voice_female: str = "en-US-Neural2-F"
    google_tts_voice_male: str = "en-US-Neural2-D"
    elevenlabs_api_key: Optional[str] = None
    elevenlabs_voice_female: str = "21m00Tcm4TlvDq8ikWAM"
    elevenlabs_voice_male: str = "TxGEqnHWrfWFTfGW9XjX"

    # Animation
    animation_provider: str = "none"  # none, mock
    animation_timeout: int = 60

    # Pipeline
    page_max_concurrent: int = 4
    job_sla_seconds: int = 600

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
