import os
from functools import lru_cache

from dotenv import load_dotenv
from pydantic import BaseModel

load_dotenv()

CHUNK_SIZE = 1000
CHUNK_OVERLAP = 200

EMBEDDING_MODEL = "text-embedding-3-small"
EMBEDDING_DIMENSION = 1536
EMBEDDING_BATCH_SIZE = 100

LLM_MODEL = "gpt-4o-mini"
LLM_TEMPERATURE = 0.2

REVIEWS_PER_CHUNK = 500
RETRIEVAL_TOP_K = 40
INSIGHTS_TOP_K = 50

STALENESS_DAYS = 7
INSIGHTS_CACHE_HOURS = 24
SUMMARY_CACHE_DAYS = 7

AMAZON_MAX_REVIEWS = 10


class Settings(BaseModel):
    """Runtime configuration, injected into services at startup."""

    database_url: str = "postgresql+psycopg2://localhost/review_insights"
    openai_api_key: str | None = None

    apify_api_token: str | None = None
    apify_base_url: str = "https://api.apify.com/v2"
    apify_webhook_secret: str | None = None
    webhook_url: str | None = None
    trustpilot_actor_id: str = "l3wcDhSSC96LBRUpc"
    amazon_actor_id: str = "8vhDnIX6dStLlGVr7"
    http_timeout: float = 30.0

    @classmethod
    def from_env(cls) -> "Settings":
        values = {
            "database_url": os.getenv("DATABASE_URL"),
            "openai_api_key": os.getenv("OPENAI_API_KEY"),
            "apify_api_token": os.getenv("APIFY_API_TOKEN"),
            "apify_base_url": os.getenv("APIFY_BASE_URL"),
            "apify_webhook_secret": os.getenv("APIFY_WEBHOOK_SECRET") or None,
            "webhook_url": os.getenv("WEBHOOK_URL"),
            "trustpilot_actor_id": os.getenv("TRUSTPILOT_ACTOR_ID"),
            "amazon_actor_id": os.getenv("AMAZON_ACTOR_ID"),
            "http_timeout": os.getenv("HTTP_TIMEOUT"),
        }
        return cls(**{k: v for k, v in values.items() if v is not None})


@lru_cache
def get_settings() -> Settings:
    return Settings.from_env()
