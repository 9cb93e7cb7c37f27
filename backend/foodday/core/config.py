from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    jwt_secret: str = "dev"
    jwt_alg: str = "HS256"
    mongo_uri: str = "mongodb://localhost:27017"
    mongo_db: str = "foodday"
    use_mongo: bool = False

    # cutoff times are merchant-local wall clock times
    timezone: str = "America/Sao_Paulo"

    max_match_radius_m: float = 10_000.0
    registry_timeout_s: float = 2.0
    donation_grace_minutes: int = 120

    sweep_interval_s: float = 60.0
    scheduler_enabled: bool = True

    log_level: str = "INFO"
    log_format: str = "json"

    model_config = SettingsConfigDict(env_file=".env", env_prefix="FOODDAY_", extra="ignore")

settings = Settings()
