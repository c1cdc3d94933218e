import os

from dotenv import load_dotenv


def _env_int(name: str, default: int) -> int:
    try:
        return int(str(os.getenv(name, "") or "").strip() or str(default))
    except Exception:
        return default


def _env_float(name: str, default: float) -> float:
    try:
        return float(str(os.getenv(name, "") or "").strip() or str(default))
    except Exception:
        return default


class Config:
    def __init__(self) -> None:
        self.APP_ENV = os.getenv("APP_ENV", "development")

        # Resource backend (cookie session; CSRF header only on state-changing calls).
        self.API_BASE_URL = os.getenv("API_BASE_URL", "http://localhost:4000/api").strip().rstrip("/")
        self.API_TIMEOUT_SECONDS = _env_float("API_TIMEOUT_SECONDS", 30.0)
        self.CSRF_TOKEN = os.getenv("CSRF_TOKEN", "").strip()

        # Resource cache.
        self.CACHE_TTL_SECONDS = _env_int("CACHE_TTL_SECONDS", 300)
        self.CACHE_MAX_ITEMS = _env_int("CACHE_MAX_ITEMS", 10000)

        # Undo windows.
        self.UNDO_DELETE_SECONDS = _env_float("UNDO_DELETE_SECONDS", 8.0)
        self.UNDO_TRANSITION_SECONDS = _env_float("UNDO_TRANSITION_SECONDS", 5.0)

        # Client-side persisted state (workspace selection, recent searches):
        # - memory://          in-process only
        # - sqlite:///./x.db   any SQLAlchemy URL
        self.KV_STORE_URL = os.getenv("KV_STORE_URL", "memory://").strip()
        self.RECENT_SEARCH_LIMIT = _env_int("RECENT_SEARCH_LIMIT", 12)

        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

    @property
    def IS_PRODUCTION(self) -> bool:
        return str(self.APP_ENV or "").strip().lower() in {"prod", "production"}

    def validate(self) -> None:
        if not str(self.API_BASE_URL or "").startswith(("http://", "https://")):
            raise RuntimeError("API_BASE_URL must be an http(s) URL")

        if self.API_TIMEOUT_SECONDS <= 0:
            raise RuntimeError("API_TIMEOUT_SECONDS must be positive")

        if self.UNDO_DELETE_SECONDS <= 0 or self.UNDO_TRANSITION_SECONDS <= 0:
            raise RuntimeError("UNDO_DELETE_SECONDS and UNDO_TRANSITION_SECONDS must be positive")

        if self.RECENT_SEARCH_LIMIT < 1:
            raise RuntimeError("RECENT_SEARCH_LIMIT must be at least 1")

        if self.IS_PRODUCTION and not self.API_BASE_URL.startswith("https://"):
            raise RuntimeError("API_BASE_URL must use https in production")

        if not str(self.KV_STORE_URL or "").strip():
            raise RuntimeError("KV_STORE_URL must be set (use memory:// for an in-process store)")


def get_config() -> Config:
    load_dotenv()
    return Config()
