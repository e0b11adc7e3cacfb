import logging
import os
from dataclasses import dataclass
from dotenv import load_dotenv

load_dotenv()


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


@dataclass
class Settings:
    # Storage settings
    storage_type: str = os.getenv("STORAGE_TYPE", "sqlite")  # sqlite | memory
    db_path: str = os.getenv("DB_PATH", "./data/library.db")
    sqlite_timeout: float = float(os.getenv("SQLITE_TIMEOUT", "5"))
    # Fall back to the in-memory store when the database cannot be opened
    storage_fallback: bool = _env_flag("STORAGE_FALLBACK", "True")

    # Startup settings
    seed_sample_data: bool = _env_flag("SEED_SAMPLE_DATA", "True")
    admin_username: str = os.getenv("ADMIN_USERNAME", "admin")
    admin_password: str = os.getenv("ADMIN_PASSWORD", "admin123")

    # Logging settings
    log_level: str = os.getenv("LOG_LEVEL", "INFO")


settings = Settings()


def configure_logging(level: str = settings.log_level) -> None:
    """Install a root handler once; later calls only adjust the level."""
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(
            level=level.upper(),
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )
    else:
        root.setLevel(level.upper())
