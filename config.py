from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings

# .env next to this module (project root)
_ENV_FILE = Path(__file__).resolve().parent / ".env"


class Settings(BaseSettings):
    database_url: str = "sqlite:///./coupons.db"
    log_level: str = "INFO"
    sql_echo: bool = False

    model_config = {
        "env_prefix": "COUPONS_",
        "env_file": _ENV_FILE if _ENV_FILE.is_file() else ".env",
        "extra": "ignore",
    }

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v: str | None) -> str:
        return (v or "INFO").strip().upper()


settings = Settings()
