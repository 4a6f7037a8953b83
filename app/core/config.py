from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    database_url: str = Field(..., alias="DATABASE_URL")

    jwt_secret_key: str = Field(..., alias="JWT_SECRET_KEY")
    jwt_algorithm: str = Field("HS256", alias="JWT_ALGORITHM")

    log_level: str = Field("INFO", alias="LOG_LEVEL")

    # Comma-separated department codes accepted in class coordinates.
    departments: str = Field("CSE,IT,ECE,EEE,Civil,Mechanical,CSBS,AIDS", alias="DEPARTMENTS")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"

    @property
    def department_codes(self) -> List[str]:
        return [d.strip() for d in self.departments.split(",") if d.strip()]


settings = Settings()
