"""Client configuration via pydantic-settings.

Reads from environment variables and .env file.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Backend
    api_url: str = "http://localhost:8080/api"
    chat_stream_path: str = "/chat/stream"

    # Initiating request retry policy (the stream body is never retried)
    request_max_attempts: int = 3
    retry_base_delay_ms: int = 1000
    connect_timeout_s: float = 30.0

    # Attachments
    max_attachment_bytes: int = 20 * 1024 * 1024

    # Static bearer token, only used by scripts/chat_cli.py
    access_token: str = ""

    @property
    def access_token_configured(self) -> bool:
        return bool(self.access_token)


settings = Settings()
