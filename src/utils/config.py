'''Configuration helpers using environment variables.'''

from __future__ import annotations

from functools import lru_cache
from typing import Literal, Optional

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    '''Global application settings.'''

    APP_NAME: str = 'AI Radiologist'
    ENVIRONMENT: Literal['dev', 'prod'] = 'dev'
    LOG_LEVEL: str = 'INFO'
    APP_URL: str = 'http://localhost:3000'

    # Managed database / auth backend
    USE_MOCK_BACKEND: bool = True
    SUPABASE_URL: Optional[str] = None
    SUPABASE_ANON_KEY: Optional[SecretStr] = None
    SUPABASE_SERVICE_ROLE_KEY: Optional[SecretStr] = None

    # AI provider
    OPENAI_API_KEY: Optional[SecretStr] = None
    OPENAI_MODEL: str = 'gpt-4o'
    OPENAI_TRANSCRIPTION_MODEL: str = 'whisper-1'

    # Payment processor
    STRIPE_SECRET_KEY: Optional[SecretStr] = None
    STRIPE_WEBHOOK_SECRET: Optional[SecretStr] = None
    STRIPE_PRICE_ID_PLUS: Optional[str] = None
    STRIPE_PRICE_ID_PRO: Optional[str] = None

    # Session handling
    SESSION_TIMEOUT_MINUTES: int = 30
    CSRF_ENFORCE: bool = False
    MAX_AUDIO_UPLOAD_MB: int = 25

    model_config = SettingsConfigDict(env_file='.env', env_file_encoding='utf-8', extra='ignore')

    @property
    def session_timeout_ms(self) -> int:
        return self.SESSION_TIMEOUT_MINUTES * 60 * 1000

    @property
    def valid_price_ids(self) -> list[str]:
        return [price for price in (self.STRIPE_PRICE_ID_PLUS, self.STRIPE_PRICE_ID_PRO) if price]


@lru_cache
def get_settings() -> Settings:
    '''Return the cached settings instance.'''
    return Settings()
