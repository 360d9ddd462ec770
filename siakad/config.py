"""
Platform settings, read from ``SIAKAD_*`` environment variables or a ``.env`` file.
"""

from typing import Any, Dict, List

from pydantic_settings import BaseSettings, SettingsConfigDict

from .core.enums import DEFAULT_MAX_CREDITS_PER_TERM


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="SIAKAD_", env_file=".env", extra="ignore")

    database_type: str = "sqlite"
    database_path: str = "siakad.db"
    database_host: str = "localhost"
    database_port: int = 5432
    database_name: str = "siakad"
    database_user: str = "siakad"
    database_password: str = ""

    max_credits_per_term: int = DEFAULT_MAX_CREDITS_PER_TERM
    lock_timeout: float = 10.0

    rest_host: str = "0.0.0.0"
    rest_port: int = 8000
    cors_origins: List[str] = ["*"]
    log_level: str = "INFO"

    def database_kwargs(self) -> Dict[str, Any]:
        """Keyword arguments for ``DatabaseFactory.create_database``."""
        if self.database_type.lower() == "sqlite":
            return {"database_path": self.database_path}
        return {
            "host": self.database_host,
            "port": self.database_port,
            "database": self.database_name,
            "user": self.database_user,
            "password": self.database_password,
        }
