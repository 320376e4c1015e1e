"""
Configuration settings for the MindsDB RAG runtime.

Uses pydantic-settings for type-safe configuration management with
environment variable support.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class AWSSettings(BaseSettings):
    """AWS-specific configuration settings."""

    model_config = SettingsConfigDict(extra="ignore")

    # Use explicit env var names to avoid capturing Lambda's temporary credentials
    region: str = Field(default="us-east-1", alias="AWS_DEFAULT_REGION")
    access_key_id: str | None = Field(default=None, alias="RAG_AWS_ACCESS_KEY_ID")
    secret_access_key: str | None = Field(default=None, alias="RAG_AWS_SECRET_ACCESS_KEY")


class SessionSettings(BaseSettings):
    """Session table configuration."""

    model_config = SettingsConfigDict(env_prefix="SESSION_", extra="ignore")

    table_name: str = Field(
        default="mindsdb-rag-sessions-dev",
        description="DynamoDB session table name",
    )
    ttl_hours: int = Field(default=24, description="Hours before an idle session expires")
    history_window: int = Field(
        default=5,
        description="Number of recent messages passed to the agent",
    )

    @field_validator("ttl_hours", "history_window")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("Value must be greater than zero")
        return v


class AgentSettings(BaseSettings):
    """Bedrock Agent configuration."""

    model_config = SettingsConfigDict(env_prefix="BEDROCK_", extra="ignore")

    agent_id: str | None = Field(default=None, description="Bedrock agent ID")
    agent_alias_id: str = Field(default="TSTALIASID", description="Bedrock agent alias ID")
    enable_trace: bool = Field(default=False, description="Request agent traces")


class Settings(BaseSettings):
    """Main application settings aggregating all configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    environment: Literal["dev", "staging", "prod"] = Field(
        default="dev",
        alias="ENVIRONMENT",
    )
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Nested settings
    aws: AWSSettings = Field(default_factory=AWSSettings)
    session: SessionSettings = Field(default_factory=SessionSettings)
    agent: AgentSettings = Field(default_factory=AgentSettings)

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == "prod"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
