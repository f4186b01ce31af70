from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    app_name: str = "MindWatch Clinical"
    env: str = "dev"
    api_prefix: str = "/api"

    database_url: str = "sqlite:///./mindwatch.db"

    jwt_secret: str = "CHANGE_ME"
    jwt_algorithm: str = "HS256"
    access_token_expire_minutes: int = 60 * 24 * 30

    frontend_origin: str = "http://localhost:3000"

    log_level: str = "INFO"
    log_file: str | None = None

    # Safety rules (changing these alters clinical alerting; review with the clinical lead first).
    alert_sla_hours: int = 24
    depression_window: int = 2
    depression_mood_threshold: int = -2

    default_prescription_frequency: str = "Conforme orientação médica"

    sse_queue_size: int = 100
    sse_keepalive_seconds: float = 15.0

    seed_demo_data: bool = True


settings = Settings()
