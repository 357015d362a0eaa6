from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="allow",
    )

    API_BASE_URL: str = "http://localhost:3001/api"
    API_TIMEOUT_SECONDS: float = 30.0
    DATABASE_URL: str = "sqlite+aiosqlite:///./aura_runner_state.db"
    LOG_LEVEL: str = "INFO"
    HOST: str = "127.0.0.1"
    PORT: int = 8000

    # Exam runner
    TICK_INTERVAL_SECONDS: float = 1.0
    AUTOSAVE_INTERVAL_SECONDS: float = 30.0
    WARNING_THRESHOLDS: list[int] = [600, 300, 60]
    WARNING_DISPLAY_SECONDS: float = 5.0
    SIMULATIONS_PATH: str = "/tcf-tef-simulation"
    RESULTS_PATH: str = "/tcf-tef-simulation/results"

    # Auth
    TOKEN_REFRESH_THRESHOLD_MINUTES: int = 5
    DEFAULT_TOKEN_LIFETIME_MINUTES: int = 15

    # Host
    FINISHED_SESSION_RETENTION_SECONDS: float = 300.0

    CORS_ORIGINS: list[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]


settings = Settings()
