"""
Runtime configuration.

Values come from environment variables; a Settings instance is built once when
the application is created and passed to whatever needs it.
"""
import os
from typing import Optional

from fastapi import Request
from pydantic import BaseModel


class Settings(BaseModel):
    database_url: Optional[str] = None
    database_name: str = "quickcart"

    jwt_secret: str = "devsecret"
    jwt_algorithm: str = "HS256"
    session_days: int = 7

    environment: str = "production"
    default_pincode: str = "332211"

    cloudinary_cloud_name: str = ""
    cloudinary_api_key: str = ""
    cloudinary_api_secret: str = ""
    cloudinary_upload_preset: str = ""
    cloudinary_folder: str = "products"

    image_max_bytes: int = 5 * 1024 * 1024
    image_max_attempts: int = 3
    image_retry_delay: float = 1.0
    http_timeout: float = 10.0

    standard_delivery_fee: float = 40.0
    express_delivery_fee: float = 60.0

    @property
    def is_development(self) -> bool:
        return self.environment.lower() == "development"

    @property
    def cloudinary_configured(self) -> bool:
        return bool(self.cloudinary_cloud_name and self.cloudinary_api_key and self.cloudinary_api_secret)

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            database_url=os.getenv("DATABASE_URL"),
            database_name=os.getenv("DATABASE_NAME", "quickcart"),
            jwt_secret=os.getenv("JWT_SECRET", "devsecret"),
            session_days=int(os.getenv("SESSION_DAYS", 7)),
            environment=os.getenv("APP_ENV", "production"),
            default_pincode=os.getenv("DEFAULT_PINCODE", "332211"),
            cloudinary_cloud_name=os.getenv("CLOUDINARY_CLOUD_NAME", ""),
            cloudinary_api_key=os.getenv("CLOUDINARY_API_KEY", ""),
            cloudinary_api_secret=os.getenv("CLOUDINARY_API_SECRET", ""),
            cloudinary_upload_preset=os.getenv("CLOUDINARY_UPLOAD_PRESET", ""),
            cloudinary_folder=os.getenv("CLOUDINARY_FOLDER", "products"),
            image_max_bytes=int(os.getenv("IMAGE_MAX_BYTES", 5 * 1024 * 1024)),
            image_max_attempts=int(os.getenv("IMAGE_MAX_ATTEMPTS", 3)),
            image_retry_delay=float(os.getenv("IMAGE_RETRY_DELAY", 1.0)),
            http_timeout=float(os.getenv("HTTP_TIMEOUT", 10.0)),
        )


def get_settings(request: Request) -> Settings:
    return request.app.state.settings
