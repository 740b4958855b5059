from pydantic_settings import BaseSettings, SettingsConfigDict
from dotenv import load_dotenv

load_dotenv()


class Settings(BaseSettings):
    PROJECT_NAME: str = "Opportunity Engine"
    ENVIRONMENT: str = "development"  # "production" switches logging to JSON
    LOG_LEVEL: str = "INFO"

    # AI suggestions (OpenAI-compatible endpoint, OpenRouter by default)
    OPENROUTER_API_KEY: str = ""  # Required for optimization runs
    AI_BASE_URL: str = "https://openrouter.ai/api/v1"
    AI_SUGGESTION_MODEL: str = "anthropic/claude-sonnet-4"
    AI_EXPLANATION_MODEL: str = "anthropic/claude-haiku-4.5"
    AI_SUGGESTION_MAX_TOKENS: int = 4000
    AI_EXPLANATION_MAX_TOKENS: int = 300

    # DataForSEO keyword metrics
    DATAFORSEO_API_LOGIN: str = ""
    DATAFORSEO_API_PASSWORD: str = ""
    DATAFORSEO_BASE_URL: str = "https://api.dataforseo.com/v3"
    DATAFORSEO_LOCATION_CODE: int = 2826  # United Kingdom
    DATAFORSEO_LANGUAGE_CODE: str = "en"
    DATAFORSEO_RATE_LIMIT: int = 12  # requests per window
    DATAFORSEO_RATE_WINDOW_SECONDS: float = 60.0

    # Holibob product inventory
    HOLIBOB_API_URL: str = "https://api.sandbox.holibob.tech/graphql"
    HOLIBOB_API_KEY: str = ""
    HOLIBOB_PARTNER_ID: str = ""
    HOLIBOB_API_SECRET: str = ""  # Optional - enables HMAC request signing
    HOLIBOB_TIMEOUT_SECONDS: float = 30.0

    # Storage (shared breaker state + opportunity table)
    DATABASE_URL: str = "sqlite:///./opportunity_engine.db"
    SHARED_BREAKER_STATE: bool = False  # Share breaker state across processes via the database
    BREAKER_STATE_TTL_SECONDS: int = 3600  # Abandoned breaker entries expire after 1 hour

    # Error tracking
    SENTRY_DSN: str = ""

    model_config = SettingsConfigDict(case_sensitive=True, env_file=".env", extra="ignore")


settings = Settings()
