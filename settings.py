import logging
import os
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field

LOGGER_NAME = "gallery"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class Settings(BaseModel):
    data_dir: Path = Field(Path("data"), description="Directory holding the JSON collections")
    uploads_dir: Path = Field(Path("uploads"), description="Content media files")
    payments_dir: Path = Field(Path("payment-proofs"), description="Payment proof files")
    secret_key: str = "supersecretkey"
    access_token_expire_minutes: int = 24 * 60
    admin_username: str = "admin"
    admin_password: Optional[str] = "admin123"
    admin_firstname: str = "Admin"
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            data_dir=Path(os.getenv("DATA_DIR", "data")),
            uploads_dir=Path(os.getenv("UPLOADS_DIR", "uploads")),
            payments_dir=Path(os.getenv("PAYMENTS_DIR", "payment-proofs")),
            secret_key=os.getenv("SECRET_KEY", "supersecretkey"),
            access_token_expire_minutes=int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 24 * 60)),
            admin_username=os.getenv("ADMIN_USERNAME", "admin"),
            admin_password=os.getenv("ADMIN_PASSWORD", "admin123") or None,
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )


def configure_logging(level: str = "INFO") -> logging.Logger:
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level.upper())
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)
    return logger
