# marketplace_analytics/core/config.py
import os
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()


class Settings(BaseSettings):
    PROJECT_NAME: str = "Marketplace Activity Analytics"
    API_V1_STR: str = "/api/v1"
    LOGGING_LEVEL: str = os.getenv("LOGGING_LEVEL", "INFO")

    # --- База событий ---
    DATABASE_URL: str = "sqlite+aiosqlite:///./analytics.db"
    DATABASE_ECHO: bool = False

    # --- Каталог объявлений (REST API маркетплейса) ---
    MARKETPLACE_API_URL: str = "http://localhost:3000"
    MARKETPLACE_API_PREFIX: str = "api"
    MARKETPLACE_API_KEY: Optional[str] = None

    # --- Провайдер геолокации ---
    GEOLOCATION_API_URL: str = "https://ipapi.co"

    # --- Доступ к админским эндпоинтам ---
    ADMIN_API_KEY: Optional[str] = None

    # --- CORS ---
    FRONTEND_URL: Optional[str] = None

    @computed_field(return_type=str)
    @property
    def MARKETPLACE_API_BASE(self) -> str:
        host = self.MARKETPLACE_API_URL.rstrip('/')
        prefix = self.MARKETPLACE_API_PREFIX.strip('/')
        return f"{host}/{prefix}" if prefix else host

    @property
    def CORS_ORIGINS(self) -> List[str]:
        """Список разрешенных origin'ов: фронтенд из настроек плюс локальная разработка."""
        origins = [
            self.FRONTEND_URL,
            "http://localhost:5173",
            "http://127.0.0.1:5173",
        ]
        return [origin.strip('/# ') for origin in origins if origin]

    model_config = SettingsConfigDict(
        env_file='.env',
        env_file_encoding='utf-8',
        case_sensitive=False,
        extra='ignore'
    )


settings = Settings()
