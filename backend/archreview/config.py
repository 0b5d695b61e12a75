from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "ArchReview API"
    app_env: str = "development"
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    cors_origins: str = "http://localhost:3000"
    cors_allow_credentials: bool = True
    log_level: str = "INFO"
    request_id_header: str = "X-Request-ID"

    admin_auth_enabled: bool = False
    admin_token_secret: str = ""
    admin_token_algorithm: str = "HS256"

    # openai|bedrock. The OpenAI-compatible backend talks to any chat-completions gateway.
    llm_backend: str = "openai"
    llm_base_url: str = "https://ark.cn-beijing.volces.com/api/v3"
    llm_api_key: str = ""
    aws_region: str = "us-east-1"

    default_model_id: str = "kimi-k2"
    health_check_timeout_seconds: float = 30.0
    health_cache_ttl_seconds: float = 300.0
    review_timeout_seconds: float = 60.0
    review_temperature: float = 0.7
    custom_probe_max_tokens: int = 10
    custom_review_max_tokens: int = 4096

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @property
    def cors_origins_list(self) -> list[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]


settings = Settings()
