from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    NODE_ENV: str = "development"
    LOG_LEVEL: str = "INFO"

    POSTGRES_USER: str = "postgres"
    POSTGRES_PASSWORD: str = "postgres"
    POSTGRES_HOST: str = "localhost"
    POSTGRES_DATABASE: str = "learning"
    POSTGRES_PORT: str = "5432"  # Default port for PostgreSQL

    # Full SQLAlchemy URL, takes precedence over the POSTGRES_* parts
    DATABASE_URL: Optional[str] = None

    # Session tokens issued by the identity provider bridge
    SESSION_SECRET: str = "your-session-secret-here"
    SESSION_TOKEN_ISSUER: str = "learning-platform"
    SESSION_TOKEN_AUDIENCE: str = "session"

    OPENAI_API_KEY: str = ""
    LLM_MODEL: str = "gpt-4o-mini"

    # CORS configuration - comma-separated list of allowed origins
    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:3001,http://localhost:8000"

    # Analytics histograms and daily series are bucketed in this timezone
    ANALYTICS_TIMEZONE: str = "UTC"

    # Lesson gating: False carries the running completion flag across modules
    ACCESS_RESET_PER_MODULE: bool = False

    # Quiz score below which the adaptive suggester switches to review mode
    REVIEW_SCORE_THRESHOLD: int = 70

    # Certificates are published under this prefix as <prefix>/<userId>-<courseId>
    CERTIFICATE_BASE_URL: str = "https://example.com/cert"

    @property
    def POSTGRES_URL(self):
        return (
            f"postgresql://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DATABASE}"
        )

    @property
    def SQLALCHEMY_URL(self):
        return self.DATABASE_URL or self.POSTGRES_URL

    model_config = SettingsConfigDict(env_file=".env.development", extra="ignore")


settings = Settings()
