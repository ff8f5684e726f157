import logging

from pydantic_settings import BaseSettings
from pydantic import ConfigDict
from typing import List, Optional

DEFAULT_CORS_ORIGINS = ",".join([
    "http://localhost:3000",
    "http://localhost:5173",
    "https://dice-raja.vercel.app",
    "https://diceraja.umkk.life",
])


class Settings(BaseSettings):
    # Environment
    ENV: str = "development"
    CONFIG_STRICT: bool = False

    # Database
    DATABASE_URL: Optional[str] = None
    TEST_DATABASE_URL: Optional[str] = None
    DB_POOL_TIMEOUT_SECONDS: int = 10
    DB_STATEMENT_TIMEOUT_MS: int = 5000  # postgres only

    # Session tokens
    JWT_SECRET: Optional[str] = None
    JWT_ALGORITHM: str = "HS256"
    JWT_EXPIRE_DAYS: int = 30

    # HTTP
    CORS_ALLOWED_ORIGINS: str = DEFAULT_CORS_ORIGINS  # comma-separated

    # Daily rewards
    REWARD_TABLE: str = "100,200,300,500,600,800,1000"  # day 1 first
    REWARD_HISTORY_WINDOW: int = 7
    REWARD_TIMEZONE: Optional[str] = None  # None/"" = server local calendar
    REWARD_LOCK_TIMEOUT_SECONDS: float = 5.0

    # Gamer membership
    GAMER_JOINING_FEE: int = 1000
    GAMER_MEMBERSHIP_DAYS: int = 365

    # Rate limiting
    RATE_LIMIT_ENABLED: bool = False
    RATE_LIMIT_PER_MINUTE_DEFAULT: int = 120
    RATE_LIMIT_BURST_DEFAULT: int = 30

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def cors_origins(self) -> List[str]:
        return [o.strip() for o in (self.CORS_ALLOWED_ORIGINS or "").split(",") if o.strip()]

    def reward_table(self) -> List[int]:
        return parse_reward_table(self.REWARD_TABLE)


settings = Settings()


def parse_reward_table(raw: str) -> List[int]:
    """Parse "100,200,..." into a list of ints. Raises ValueError on junk."""
    values = [part.strip() for part in (raw or "").split(",") if part.strip()]
    return [int(v) for v in values]


def validate_config(strict: Optional[bool] = None, settings_obj: Optional[Settings] = None, logger: Optional[logging.Logger] = None) -> bool:
    """Validate required configuration.

    In strict mode raise RuntimeError; otherwise emit warnings only.
    Secrets are not logged, only missing keys.
    """
    cfg = settings_obj or settings
    log = logger or logging.getLogger("diceraja")
    strict_mode = strict if strict is not None else getattr(cfg, "CONFIG_STRICT", False)

    required_keys = [
        "DATABASE_URL",
        "JWT_SECRET",
    ]

    missing = [key for key in required_keys if not getattr(cfg, key, None)]
    if missing:
        message = f"Missing required configuration: {', '.join(missing)}"
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    return True
