from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    DATABASE_URL: str = "postgresql://ackengine:ackengine@db:5432/ackengine"
    APP_ENV: str = "development"

    # Comma-separated allowed origins, or "*" to allow all.
    # Example: "https://console.example.com,https://api.example.com"
    CORS_ORIGINS: str = "*"

    LOG_LEVEL: str = "INFO"
    JSON_LOGS: bool = True

    # Blend weight for effective scores. Must equal the weight used by the
    # meta-analysis job that writes meta_score.
    EFFECTIVE_SCORE_META_WEIGHT: float = 0.7

    # Max ids per IN (...) statement when flipping events or deleting scores.
    ACK_CHUNK_SIZE: int = 5000
    # Max message texts collected per flip for finding matching.
    ACK_MESSAGE_SAMPLE_LIMIT: int = 100

    FINDING_MATCH_THRESHOLD: float = 0.5
    FINDING_MIN_WORD_LENGTH: int = 4

    SCORE_WINDOW_DAYS_DEFAULT: int = 7
    SCORE_WINDOW_DAYS_MAX: int = 90

    BY_IDS_MAX: int = 50

    @property
    def cors_origins_list(self) -> list[str]:
        if self.CORS_ORIGINS.strip() == "*":
            return ["*"]
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]


settings = Settings()
