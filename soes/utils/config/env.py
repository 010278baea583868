from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "soes"
    environment: str = "local"
    debug: bool = True
    log_level: str = "INFO"

    mongo_url: str | None = None
    mongo_port: int = 27017
    mongo_host: str = "localhost"
    mongo_db: str = "soes"
    mongo_password: str | None = None
    mongo_user: str | None = None
    mongo_srv: bool = False
    mongo_tls: bool = False
    mongo_transactions: bool = False

    jwt_algorithm: str = "HS256"
    jwt_secret_key: str = "very-secret-key"
    access_token_expires_minutes: int = 60
    refresh_token_expires_days: int = 7

    redis_db: int = 0
    redis_port: int = 6379
    redis_host: str = "localhost"
    redis_password: str | None = None
    submit_cooldown_seconds: int = 5

    model_config = SettingsConfigDict(env_file=(".env",), case_sensitive=True)

    @property
    def mongo_uri(self) -> str:
        if self.mongo_url:
            return self.mongo_url
        auth = ""
        if self.mongo_user and self.mongo_password:
            auth = f"{self.mongo_user}:{self.mongo_password}@"
        if self.mongo_srv:
            params = "?retryWrites=true&w=majority"
            return f"mongodb+srv://{auth}{self.mongo_host}/{self.mongo_db}{params}"
        return f"mongodb://{auth}{self.mongo_host}:{self.mongo_port}/{self.mongo_db}"

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


settings = Settings()
