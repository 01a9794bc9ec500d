import os
from dotenv import load_dotenv

load_dotenv()


def _optional_float(name: str):
    raw = os.getenv(name, "").strip()
    return float(raw) if raw else None


class Settings:
    database_url: str = os.getenv(
        "DATABASE_URL",
        "sqlite+aiosqlite:///./skladisce.sqlite3"
    )
    database_echo: bool = os.getenv("DATABASE_ECHO", "False").lower() == "true"

    # Empty means: generate once and keep it in the settings table
    jwt_secret: str = os.getenv("JWT_SECRET", "")
    jwt_lifetime_seconds: int = int(os.getenv("JWT_LIFETIME_SECONDS", str(7 * 24 * 3600)))

    # Bounded wait for the write lock held by a concurrent inventory operation
    lock_timeout_seconds: float = float(os.getenv("LOCK_TIMEOUT_SECONDS", "5"))
    operation_timeout_seconds = _optional_float("OPERATION_TIMEOUT_SECONDS")

    log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()
    log_file: str = os.getenv("LOG_FILE", "")

    max_image_bytes: int = int(os.getenv("MAX_IMAGE_BYTES", str(5 * 1024 * 1024)))
    cors_origins: list = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]


settings = Settings()
