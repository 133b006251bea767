"""
Provider Registry - Configuration

Loads settings from environment variables with sensible defaults.
"""

from pathlib import Path

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load .env file
load_dotenv()

# Project root directory
PROJECT_ROOT = Path(__file__).parent.parent

# Created by init_db() on first use, not at import
DATA_DIR = PROJECT_ROOT / "data"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # Database
    DATABASE_URL: str = Field(
        default=f"sqlite:///{DATA_DIR}/provider_registry.db"
    )

    @property
    def project_root(self) -> Path:
        """Return project root directory."""
        return PROJECT_ROOT

    # Application
    DEBUG: bool = Field(default=False)
    LOG_LEVEL: str = Field(default="INFO")
    LOG_TO_FILE: bool = Field(default=True)
    LOG_DIR: Path = Field(default=PROJECT_ROOT / "logs")

    # Entity resolution weights (per field, see MatchConfig)
    MATCH_NAME_WEIGHT: float = Field(default=0.35)
    MATCH_ADDRESS_WEIGHT: float = Field(default=0.30)
    MATCH_CITY_WEIGHT: float = Field(default=0.15)
    MATCH_ZIP_WEIGHT: float = Field(default=0.15)
    MATCH_PHONE_WEIGHT: float = Field(default=0.05)

    # Entity resolution thresholds (0-1)
    AUTO_MATCH_THRESHOLD: float = Field(default=0.85)
    REVIEW_THRESHOLD: float = Field(default=0.60)
    REJECT_THRESHOLD: float = Field(default=0.40)

    # "weighted_average" or "raw_sum"
    SCORE_POLICY: str = Field(default="weighted_average")

    # Candidate retrieval
    CANDIDATE_LIMIT: int = Field(default=100)
    NAME_PREFIX_LENGTH: int = Field(default=10)


settings = Settings()
