from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    DATABASE_URL: str = "sqlite:///./reproute.db"
    LEDGER_DATABASE_URL: str | None = None
    REDIS_URL: str = "redis://localhost:6379/0"

    API_KEY: SecretStr | None = None

    ORACLE_API_KEY: SecretStr | None = None
    ORACLE_BASE_URL: str = "https://api.asi1.ai"
    ORACLE_MODEL: str = "asi1-mini"
    ORACLE_TIMEOUT_SECONDS: float = 30.0
    ORACLE_ENABLED: bool = True

    ANALYTICS_DEFAULT_DAYS: int = 30
    LOG_LEVEL: str = "INFO"
    ENV: str = "dev"

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

settings = Settings()
