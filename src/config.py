from __future__ import annotations

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class LoggingConfig(BaseModel):
    level: str = "INFO"
    format: str = "console"


class ParserConfig(BaseModel):
    encoding: str = "utf-8"
    fallback_encodings: list[str] = Field(default_factory=lambda: ["gbk", "latin-1"])


class WriterConfig(BaseModel):
    encoding: str = "utf-8"
    default_node: str = "Vector__XXX"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="DBC_", env_nested_delimiter="__")

    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    parser: ParserConfig = Field(default_factory=ParserConfig)
    writer: WriterConfig = Field(default_factory=WriterConfig)


def get_settings() -> Settings:
    return Settings()
