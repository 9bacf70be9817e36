# askboard/core/config.py
from dotenv import load_dotenv
import os

load_dotenv()


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return float(raw)


class Settings:
    APP_NAME: str = os.getenv("APP_NAME", "askboard")
    APP_ENV: str = os.getenv("APP_ENV", "development")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # task service
    API_BASE_URL: str = os.getenv("API_BASE_URL", "http://localhost:8000/api/v1")
    API_TOKEN: str | None = os.getenv("API_TOKEN")
    HTTP_TIMEOUT_SECONDS: float = _float_env("HTTP_TIMEOUT_SECONDS", 20.0)

    # orchestration
    TASK_TIMEOUT_SECONDS: float = _float_env("TASK_TIMEOUT_SECONDS", 300.0)
    POLL_INTERVAL_SECONDS: float = _float_env("POLL_INTERVAL_SECONDS", 2.0)
    POLL_BACKOFF_FACTOR: float = _float_env("POLL_BACKOFF_FACTOR", 1.25)
    POLL_MAX_INTERVAL_SECONDS: float = _float_env("POLL_MAX_INTERVAL_SECONDS", 10.0)
    MAX_SERVER_ERRORS: int = int(_float_env("MAX_SERVER_ERRORS", 5))

    # conversations
    DEDUP_WINDOW_SECONDS: float = _float_env("DEDUP_WINDOW_SECONDS", 5.0)
    CONVERSATIONS_PATH: str = os.getenv("CONVERSATIONS_PATH", "./data/conversations.json")


settings = Settings()
