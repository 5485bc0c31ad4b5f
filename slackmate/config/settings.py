"""
Application settings and configuration management.

Uses Pydantic Settings for validation and environment variable support.
"""

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class LLMSettings(BaseSettings):
    """LLM backend configuration."""

    model: str = Field(
        default="openai/gemini-3-flash-preview",
        description="LiteLLM model string. The 'openai/' prefix routes to any "
                    "OpenAI-compatible chat-completions endpoint set in api_base.",
    )
    api_key: str = Field(default="", description="Bearer token for the backend")
    api_base: str | None = Field(
        default=None,
        description="Base URL of the chat-completions endpoint, e.g. "
                    "'https://proxy.example.com/v1'. None uses the provider default.",
    )
    temperature: float | None = Field(default=None, description="Sampling temperature")
    max_tokens: int | None = Field(default=None, description="Maximum tokens in response")
    timeout: float = Field(default=60.0, description="Per-request timeout in seconds")
    max_tool_rounds: int = Field(
        default=5, ge=1, description="Upper bound on model calls per turn"
    )

    model_config = SettingsConfigDict(env_prefix="LLM_", env_file=".env", extra="ignore")


class RedmineSettings(BaseSettings):
    """Redmine REST API configuration."""

    url: str = Field(default="", description="Redmine base URL, e.g. https://redmine.example.com")
    api_key: str = Field(default="", description="Value for the X-Redmine-API-Key header")
    default_project_id: str = Field(
        default="", description="Project used when a tool call does not name one"
    )

    model_config = SettingsConfigDict(env_prefix="REDMINE_", env_file=".env", extra="ignore")


class GitLabSettings(BaseSettings):
    """GitLab REST API configuration."""

    url: str = Field(default="https://gitlab.com", description="GitLab instance URL")
    token: str = Field(default="", description="Personal access token (PRIVATE-TOKEN header)")

    model_config = SettingsConfigDict(env_prefix="GITLAB_", env_file=".env", extra="ignore")


class MCPSettings(BaseSettings):
    """Remote MCP tool server configuration."""

    config_path: Path = Field(
        default=Path("mcp-config.json"),
        description="JSON file mapping server id to {url, params}. "
                    "Params may contain ${ENV_VAR} placeholders.",
    )
    timeout: float = Field(default=30.0, description="Per-request timeout in seconds")

    model_config = SettingsConfigDict(env_prefix="MCP_", env_file=".env", extra="ignore")


class AssistantSettings(BaseSettings):
    """Conversation behaviour and the fixed replies shown to chat users."""

    timezone: str = Field(
        default="Asia/Ho_Chi_Minh",
        description="IANA time zone used for the current-time line in the system prompt",
    )
    unavailable_reply: str = Field(
        default="Sorry, I can't handle this request right now.",
        description="Reply when the LLM backend call fails",
    )
    empty_reply: str = Field(
        default="I have nothing to add to this conversation.",
        description="Reply when the model answers with empty text",
    )
    round_limit_reply: str = Field(
        default="I've finished processing your requests.",
        description="Reply when the tool-call round limit is reached",
    )
    error_reply: str = Field(
        default="Something went wrong while calling the AI.",
        description="Reply for any unexpected error during a turn",
    )

    model_config = SettingsConfigDict(env_prefix="ASSISTANT_", env_file=".env", extra="ignore")


class Settings(BaseSettings):
    """Main application settings."""

    # Environment
    environment: Literal["development", "production"] = Field(
        default="development", description="Deployment environment"
    )

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )
    log_file: Path | None = Field(default=None, description="Log file path")

    http_timeout: float = Field(
        default=30.0, description="Timeout in seconds for Redmine and GitLab requests"
    )

    # Sub-configurations
    llm: LLMSettings = Field(default_factory=LLMSettings)
    redmine: RedmineSettings = Field(default_factory=RedmineSettings)
    gitlab: GitLabSettings = Field(default_factory=GitLabSettings)
    mcp: MCPSettings = Field(default_factory=MCPSettings)
    assistant: AssistantSettings = Field(default_factory=AssistantSettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )


# Global settings instance
_settings: Settings | None = None


def get_settings() -> Settings:
    """Get or create the global settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def load_settings(env_file: str | Path | None = None) -> Settings:
    """
    Load settings from file and environment.

    Args:
        env_file: Path to .env file (optional)

    Returns:
        Loaded settings instance
    """
    global _settings
    if env_file:
        # Sections read their own prefixed variables, so they need the file too
        _settings = Settings(
            _env_file=env_file,
            llm=LLMSettings(_env_file=env_file),
            redmine=RedmineSettings(_env_file=env_file),
            gitlab=GitLabSettings(_env_file=env_file),
            mcp=MCPSettings(_env_file=env_file),
            assistant=AssistantSettings(_env_file=env_file),
        )
    else:
        _settings = Settings()
    return _settings
