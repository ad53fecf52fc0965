"""botchat configuration — loaded from environment / .env file."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_prefix="BOTCHAT_", extra="ignore")

    env: str = "development"
    log_level: str = "INFO"

    # Chat API
    api_base_url: str = "http://127.0.0.1:8080/api"
    api_token: str = ""  # sent as a bearer token when set
    request_timeout: float = 30.0
    stream_timeout: float = 300.0  # read timeout between stream chunks
    channel: str = "web"

    # Initial selection (restored from a previous session)
    bot_id: str | None = None
    chat_id: str | None = None

    @property
    def auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.api_token}"} if self.api_token else {}


settings = Settings()
