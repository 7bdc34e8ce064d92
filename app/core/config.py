"""Application configuration management."""

from pydantic import BaseModel
from pydantic_settings import BaseSettings, SettingsConfigDict


class TallyConfig(BaseModel):
    """Thresholds used by the verification components.

    Passed explicitly into location verification, anomaly detection and
    scoring so they can be exercised without touching the environment.
    """

    # Location verification
    default_location_radius: int = 500  # meters

    # Anomaly detection (percentages)
    high_turnout_threshold: float = 95.0
    low_turnout_threshold: float = 20.0
    rejection_rate_threshold: float = 10.0
    landslide_threshold: float = 90.0

    # Confidence scoring
    required_photo_types: tuple[str, ...] = ("full_form", "signature")
    invalid_math_penalty: int = 20

    model_config = {"frozen": True}


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str

    # JWT Configuration
    SECRET_KEY: str
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 1440

    # CORS
    CORS_ORIGINS: str = "http://localhost:3000,http://127.0.0.1:3000"

    # Verification thresholds
    DEFAULT_LOCATION_RADIUS_M: int = 500
    HIGH_TURNOUT_THRESHOLD: float = 95.0
    LOW_TURNOUT_THRESHOLD: float = 20.0
    REJECTION_RATE_THRESHOLD: float = 10.0
    LANDSLIDE_THRESHOLD: float = 90.0

    # Environment
    ENVIRONMENT: str = "development"

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins from comma-separated string."""
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",")]

    def tally_config(self) -> TallyConfig:
        """Build the verification config from environment settings."""
        return TallyConfig(
            default_location_radius=self.DEFAULT_LOCATION_RADIUS_M,
            high_turnout_threshold=self.HIGH_TURNOUT_THRESHOLD,
            low_turnout_threshold=self.LOW_TURNOUT_THRESHOLD,
            rejection_rate_threshold=self.REJECTION_RATE_THRESHOLD,
            landslide_threshold=self.LANDSLIDE_THRESHOLD,
        )


settings = Settings()


def get_tally_config() -> TallyConfig:
    return settings.tally_config()
