from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Identity written into FILE_ID / DEVICE_INFO (255 = FIT "development")
    manufacturer_id: int = 255
    product_id: int = 1
    serial_number: int = 12345
    product_name: str = "Activity Export"
    software_version: float = 1.0

    default_activity_name: str = "Exported activity"
    default_sport: int = 2  # cycling
    filename_prefix: str = "activity"

    class Config:
        env_prefix = "ACTIVITY_EXPORT_"
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
