from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Empty means "not configured"; the connection manager refuses to start.
    DATABASE_URL: str = ""
    STORE_TIMEOUT_SECONDS: float = 5.0

    CLERK_WEBHOOK_SECRET: str = ""
    CLERK_SECRET_KEY: str = ""
    CLERK_API_URL: str = "https://api.clerk.com/v1"
    CLERK_API_TIMEOUT_SECONDS: float = 10.0
    STRIPE_SECRET_KEY: str = ""
    STRIPE_WEBHOOK_SECRET: str = ""

    DEFAULT_CREDIT_BALANCE: int = 10
    DEFAULT_PLAN_ID: int = 1

    APP_ENV: str = "development"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
