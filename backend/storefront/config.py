"""Application settings and validation."""

import os
from pathlib import Path

BASE = Path(__file__).resolve().parent.parent


class Settings:
    ENV: str
    DATABASE_URL: str
    JWT_SECRET: str
    JWT_ALGORITHM: str
    JWT_EXPIRE_HOURS: int
    MAX_UPLOAD_BYTES: int
    PHOTO_STORAGE_DIR: Path
    PHOTO_BASE_URL: str
    PHOTO_SIZE: int
    ALLOW_INSECURE_JWT: bool
    ALLOW_DEV_CORS: bool
    LOG_LEVEL: str

    def __init__(self):
        self.ENV = os.getenv("ENV", "dev").lower()
        self.DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{BASE / 'storefront.db'}")
        self.JWT_SECRET = os.getenv("JWT_SECRET", "change_me_for_prod")
        self.JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
        self.JWT_EXPIRE_HOURS = int(os.getenv("JWT_EXPIRE_HOURS", "24"))
        self.MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", str(5 * 1024 * 1024)))  # 5 MB default
        self.PHOTO_STORAGE_DIR = Path(os.getenv("PHOTO_STORAGE_DIR", str(BASE / "data" / "photos"))).expanduser().resolve()
        self.PHOTO_BASE_URL = os.getenv("PHOTO_BASE_URL", "/photos").rstrip("/")
        # photos are cropped to a PHOTO_SIZE x PHOTO_SIZE square
        self.PHOTO_SIZE = int(os.getenv("PHOTO_SIZE", "500"))
        self.ALLOW_INSECURE_JWT = os.getenv("ALLOW_INSECURE_JWT", "false").lower() == "true"
        self.ALLOW_DEV_CORS = os.getenv("ALLOW_DEV_CORS", "true").lower() == "true"
        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
        self._validate()

    def _validate(self):
        if self.ENV != "dev" and not self.ALLOW_INSECURE_JWT and self.JWT_SECRET == "change_me_for_prod":
            raise RuntimeError("JWT_SECRET must be set to a non-default value in non-dev environments")
        if self.PHOTO_SIZE <= 0:
            raise RuntimeError("PHOTO_SIZE must be a positive number of pixels")


settings = Settings()
