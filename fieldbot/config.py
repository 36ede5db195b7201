import os
from dataclasses import dataclass, field
from typing import Dict, Optional

from dotenv import load_dotenv

# Load .env for local development if present
load_dotenv()


# Idle minutes before a mode session is swept. Photo-by-photo modes are
# short lived; authoring modes keep their data longer.
DEFAULT_MODE_TTL_MINUTES: Dict[str, float] = {
    "location": 10,
    "workbook": 30,
    "archive": 10,
    "geotags": 10,
    "kml": 30,
    "ocr": 10,
}


def _float_env(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    bot_token: str
    supabase_url: Optional[str]
    supabase_service_role_key: Optional[str]
    openai_api_key: Optional[str] = None
    openai_model_vision: Optional[str] = None
    telegram_webhook_secret: Optional[str] = None
    geocoder_url: str = "https://nominatim.openstreetmap.org"
    geocoder_user_agent: str = "fieldbot/1.0"
    geocoder_timeout: float = 10.0
    sweep_interval_seconds: float = 60.0
    mode_log_path: Optional[str] = None
    mode_ttl_minutes: Dict[str, float] = field(
        default_factory=lambda: dict(DEFAULT_MODE_TTL_MINUTES)
    )

    def ttl_seconds(self, mode_value: str) -> float:
        minutes = self.mode_ttl_minutes.get(mode_value, 10)
        return float(minutes) * 60.0

    def require_bot_token(self) -> str:
        if not self.bot_token:
            raise RuntimeError(
                "BOT_TOKEN (or TELEGRAM_BOT_TOKEN) is not set in environment"
            )
        return self.bot_token

    @staticmethod
    def from_env() -> "Settings":
        token = (os.getenv("BOT_TOKEN") or os.getenv("TELEGRAM_BOT_TOKEN") or "").strip()

        ttls = {
            mode: _float_env(f"MODE_TTL_{mode.upper()}", default)
            for mode, default in DEFAULT_MODE_TTL_MINUTES.items()
        }

        return Settings(
            bot_token=token,
            supabase_url=os.getenv("SUPABASE_URL"),
            supabase_service_role_key=os.getenv("SUPABASE_SERVICE_ROLE_KEY"),
            openai_api_key=os.getenv("OPENAI_API_KEY"),
            openai_model_vision=os.getenv("OPENAI_MODEL_VISION"),
            telegram_webhook_secret=os.getenv("TELEGRAM_WEBHOOK_SECRET"),
            geocoder_url=(os.getenv("GEOCODER_URL") or "https://nominatim.openstreetmap.org").rstrip("/"),
            geocoder_user_agent=os.getenv("GEOCODER_USER_AGENT") or "fieldbot/1.0",
            geocoder_timeout=_float_env("GEOCODER_TIMEOUT", 10.0),
            sweep_interval_seconds=_float_env("SWEEP_INTERVAL_SECONDS", 60.0),
            mode_log_path=os.getenv("MODE_LOG_PATH") or None,
            mode_ttl_minutes=ttls,
        )


settings = Settings.from_env()
