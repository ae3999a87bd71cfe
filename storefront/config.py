import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

# Force-load .env (Windows-safe, reload-safe)
BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(dotenv_path=BASE_DIR / ".env")

DEFAULT_ORIGINS = [
    "http://localhost:5173",
    "http://localhost:5174",
    "http://localhost:3000",
]


def _split_origins(raw: Optional[str]) -> List[str]:
    if not raw:
        return list(DEFAULT_ORIGINS)
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


@dataclass
class Settings:
    razorpay_key_id: Optional[str] = None
    razorpay_key_secret: Optional[str] = None
    razorpay_webhook_secret: Optional[str] = None
    allowed_origins: List[str] = field(default_factory=lambda: list(DEFAULT_ORIGINS))
    allow_all_origins: bool = False
    database_url: Optional[str] = None
    jwt_secret: Optional[str] = None
    port: int = 3001
    environment: str = "development"
    currency: str = "INR"
    order_source: str = "storefront_web"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            razorpay_key_id=os.getenv("RAZORPAY_KEY_ID"),
            razorpay_key_secret=os.getenv("RAZORPAY_KEY_SECRET"),
            razorpay_webhook_secret=os.getenv("RAZORPAY_WEBHOOK_SECRET"),
            allowed_origins=_split_origins(os.getenv("ALLOWED_ORIGINS")),
            allow_all_origins=os.getenv("ALLOW_ALL_ORIGINS") == "true",
            database_url=os.getenv("DATABASE_URL"),
            jwt_secret=os.getenv("JWT_SECRET"),
            port=int(os.getenv("PORT", "3001")),
            environment=os.getenv("NODE_ENV") or os.getenv("ENVIRONMENT") or "development",
            order_source=os.getenv("ORDER_SOURCE", "storefront_web"),
        )

    @property
    def razorpay_configured(self) -> bool:
        return bool(self.razorpay_key_id and self.razorpay_key_secret)

    @property
    def uses_test_key(self) -> bool:
        return bool(self.razorpay_key_id and self.razorpay_key_id.startswith("rzp_test_"))

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def masked_key_id(self) -> str:
        if not self.razorpay_key_id:
            return "NOT_SET"
        return f"{self.razorpay_key_id[:8]}..."
