from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
from fastapi import Depends
from typing_extensions import Annotated


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    app_name: str = "Todo API"
    api_host: str = "0.0.0.0"
    api_port: int = 8080

    database_url: str = "sqlite+aiosqlite:///./todo.db"
    database_echo: bool = False  # SQL echo, keep off in production

    redis_dsn: str = "redis://localhost:6379/0"
    redis_pool_size: int = 5
    redis_socket_timeout: float = 5.0
    cache_op_timeout_seconds: float = 2.0  # per Redis command

    ui_url: str = "http://localhost:5173"
    swagger_enabled: bool = True

    log_level: str = "INFO"


@lru_cache
def get_settings() -> Settings:
    return Settings()


SettingsDep = Annotated[Settings, Depends(get_settings)]
