'''Configuration helpers using environment variables.'''

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_PROTOCOLS_PATH = Path(__file__).resolve().parents[1] / 'data' / 'protocols.json'


class Settings(BaseSettings):
    '''Global application settings.'''

    APP_NAME: str = 'EMS Protocol Lookup'
    ENVIRONMENT: Literal['dev', 'staging', 'prod'] = 'dev'
    LOG_LEVEL: str = 'INFO'

    PROTOCOLS_PATH: Path = DEFAULT_PROTOCOLS_PATH
    SEARCH_THRESHOLD: float = Field(default=0.4, gt=0.0, le=1.0)
    CONTEXT_LIMIT: int = Field(default=5, ge=1)

    CHAT_LLM_ENDPOINT: str = 'https://api.mistral.ai/v1'
    CHAT_LLM_MODEL: str = 'mistral-small-latest'
    CHAT_LLM_API_KEY: Optional[SecretStr] = None

    QUIZ_LLM_ENDPOINT: Optional[str] = None
    QUIZ_LLM_MODEL: str = 'gpt-4o-mini'
    QUIZ_LLM_API_KEY: Optional[SecretStr] = None

    LLM_TIMEOUT_SECONDS: float = Field(default=30.0, gt=0.0)
    LLM_MAX_ATTEMPTS: int = Field(default=1, ge=1)

    model_config = SettingsConfigDict(env_file='.env', extra='ignore')


@lru_cache
def get_settings() -> Settings:
    '''Return the cached settings instance.'''
    return Settings()
