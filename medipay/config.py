import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Force-load .env (Windows-safe, reload-safe)
BASE_DIR = Path(__file__).resolve().parent.parent
ENV_PATH = BASE_DIR / ".env"
load_dotenv(dotenv_path=ENV_PATH)


@dataclass(frozen=True)
class Settings:
    database_url: str
    key_id: Optional[str]
    key_secret: Optional[str]
    webhook_secret: Optional[str]
    gateway_timeout: float
    jwt_secret: Optional[str]
    frontend_url: str
    debug: bool

    @property
    def has_credentials(self) -> bool:
        return bool(self.key_id and self.key_secret)

    @property
    def signing_secret(self) -> Optional[str]:
        """Secret used for webhook bodies; the key secret stands in when unset."""
        return self.webhook_secret or self.key_secret

    @property
    def key_id_preview(self) -> Optional[str]:
        if not self.key_id:
            return None
        return self.key_id[:8] + "***"


def get_settings() -> Settings:
    return Settings(
        database_url=os.getenv("DATABASE_URL") or "sqlite:///./medipay.db",
        key_id=os.getenv("RAZORPAY_KEY_ID") or None,
        key_secret=os.getenv("RAZORPAY_KEY_SECRET") or None,
        webhook_secret=os.getenv("RAZORPAY_WEBHOOK_SECRET") or None,
        gateway_timeout=float(os.getenv("GATEWAY_TIMEOUT", "10")),
        jwt_secret=os.getenv("JWT_SECRET") or None,
        frontend_url=os.getenv("FRONTEND_URL", "http://localhost:3000"),
        debug=os.getenv("DEBUG", "false").lower() in ("1", "true", "yes"),
    )
