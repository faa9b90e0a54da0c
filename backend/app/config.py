import os
from typing import List

class Settings:
    def _split_csv(self, raw: str, *, default: List[str]) -> List[str]:
        parts = [p.strip() for p in (raw or "").split(",")]
        return [p for p in parts if p] or default

    def _int(self, name: str, default: int) -> int:
        raw = (os.getenv(name) or "").strip()
        if not raw:
            return default
        try:
            return int(raw)
        except Exception:
            return default

    def __init__(self) -> None:
        self.env = os.getenv('APP_ENV', 'local')
        self.db_url = (
            os.getenv("APP_DATABASE_URL") or os.getenv("DATABASE_URL") or "postgresql://localhost/ichibot"
        )
        # Conservative for local/dev; raise in prod.
        self.db_pool_min = max(1, self._int("DB_POOL_MIN_SIZE", 1))
        self.db_pool_max = max(self.db_pool_min, self._int("DB_POOL_MAX_SIZE", 10))
        # Comma-separated list of allowed CORS origins for browser clients.
        self.cors_origins = self._split_csv(
            os.getenv("CORS_ORIGINS", "").strip(),
            default=["http://localhost:3000", "http://127.0.0.1:3000"],
        )
        self.api_version = os.getenv("APP_VERSION", "0.1.0").strip() or "0.1.0"

        # Secret for at-rest field encryption. Never stored in the DB.
        self.auth_key = (os.getenv("AUTH_KEY") or "").strip()
        self.session_hours = max(1, self._int("SESSION_HOURS", 6))
        self.login_max_attempts = max(1, self._int("LOGIN_MAX_ATTEMPTS", 7))
        self.login_block_minutes = max(1, self._int("LOGIN_BLOCK_MINUTES", 5))

        self.upload_dir = (os.getenv("UPLOAD_DIR") or "").strip() or os.path.join(os.getcwd(), "uploads")
        self.upload_max_mb = max(1, min(self._int("UPLOAD_MAX_MB", 10), 100))

        # WooCommerce storefront mirrored into store_products.
        self.wc_url = (os.getenv("WC_URL") or "").strip().rstrip("/")
        self.wc_consumer_key = (os.getenv("WC_CONSUMER_KEY") or "").strip()
        self.wc_consumer_secret = (os.getenv("WC_CONSUMER_SECRET") or "").strip()

        # Public, unauthenticated APIs.
        self.fx_api_url = (os.getenv("FX_API_URL") or "https://open.er-api.com/v6/latest").strip().rstrip("/")
        self.holiday_api_url = (
            os.getenv("HOLIDAY_API_URL") or "https://date.nager.at/api/v3/PublicHolidays"
        ).strip().rstrip("/")
        self.holiday_country = (os.getenv("HOLIDAY_COUNTRY") or "ID").strip().upper() or "ID"

    @property
    def is_dev(self) -> bool:
        return self.env in {"local", "dev"}

    @property
    def wc_configured(self) -> bool:
        return bool(self.wc_url and self.wc_consumer_key and self.wc_consumer_secret)

settings = Settings()
