"""Application configuration using Pydantic BaseSettings."""

import logging

import structlog
from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from visionlight.services.credits.pricing import PricingTable


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file="../.env", env_file_encoding="utf-8", extra="ignore")

    # Application Database Configuration
    database_url: str = Field(alias="DATABASE_URL")
    db_pool_size: int = Field(default=20, alias="DB_POOL_SIZE")

    # Application Environment
    app_env: str = Field(default="development", alias="APP_ENV")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # CORS Configuration
    cors_origins: str = Field(default="http://localhost:5173", alias="CORS_ORIGINS")

    # Server Configuration
    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=4000, alias="PORT")

    # Replicate (images, carousels, outpainting)
    replicate_api_token: str = Field(default="", alias="REPLICATE_API_TOKEN")
    replicate_image_model: str = Field(
        default="black-forest-labs/flux-schnell", alias="REPLICATE_IMAGE_MODEL"
    )
    replicate_outpaint_model: str = Field(
        default="twn39/lama:2b91ca2340801c2a5be745612356fac36a17f698354a07f48a62d564d3b3a7a0",
        alias="REPLICATE_OUTPAINT_MODEL",
    )

    # Video providers
    fal_key: str = Field(default="", alias="FAL_KEY")
    fal_queue_url: str = Field(default="https://queue.fal.run", alias="FAL_QUEUE_URL")
    kie_api_key: str = Field(default="", alias="KIE_AI_API_KEY")
    kie_base_url: str = Field(default="https://api.kie.ai/api/v1", alias="KIE_BASE_URL")
    openai_api_key: str = Field(default="", alias="OPENAI_API_KEY")
    openai_base_url: str = Field(default="https://api.openai.com/v1", alias="OPENAI_BASE_URL")
    video_upload_timeout_seconds: float = Field(default=600.0, alias="VIDEO_UPLOAD_TIMEOUT_SECONDS")

    # Durable asset storage (Cloudinary)
    cloudinary_cloud_name: str = Field(default="", alias="CLOUDINARY_CLOUD_NAME")
    cloudinary_api_key: str = Field(default="", alias="CLOUDINARY_API_KEY")
    cloudinary_api_secret: str = Field(default="", alias="CLOUDINARY_API_SECRET")
    storage_root_folder: str = Field(default="visionlight", alias="STORAGE_ROOT_FOLDER")

    # Polling sweep
    sweep_interval_seconds: float = Field(default=5.0, alias="SWEEP_INTERVAL_SECONDS")
    sweep_batch_size: int = Field(default=100, alias="SWEEP_BATCH_SIZE")
    max_concurrent_polls: int = Field(default=8, alias="MAX_CONCURRENT_POLLS")
    image_poll_interval_seconds: float = Field(default=2.0, alias="IMAGE_POLL_INTERVAL_SECONDS")
    carousel_poll_interval_seconds: float = Field(
        default=3.0, alias="CAROUSEL_POLL_INTERVAL_SECONDS"
    )
    video_poll_interval_seconds: float = Field(default=10.0, alias="VIDEO_POLL_INTERVAL_SECONDS")

    # Job-level timeouts (measured from submission)
    video_timeout_minutes: int = Field(default=45, alias="VIDEO_TIMEOUT_MINUTES")
    image_timeout_minutes: int = Field(default=10, alias="IMAGE_TIMEOUT_MINUTES")
    submission_stale_seconds: int = Field(default=600, alias="SUBMISSION_STALE_SECONDS")
    # A claimed hand-off is abandoned after this long; stale claims wait for it plus a margin
    submit_deadline_seconds: float = Field(default=900.0, alias="SUBMIT_DEADLINE_SECONDS")
    claimed_stale_margin_seconds: float = Field(
        default=300.0, alias="CLAIMED_STALE_MARGIN_SECONDS"
    )

    # Compositor / outpainting
    aspect_tolerance: float = Field(default=0.05, alias="ASPECT_TOLERANCE")
    outpaint_max_attempts: int = Field(default=30, alias="OUTPAINT_MAX_ATTEMPTS")
    outpaint_poll_interval_seconds: float = Field(
        default=1.0, alias="OUTPAINT_POLL_INTERVAL_SECONDS"
    )
    outpaint_seam_margin: int = Field(default=8, alias="OUTPAINT_SEAM_MARGIN")

    # Pricing (credits)
    price_image: float = Field(default=1, alias="PRICE_IMAGE")
    price_carousel: float = Field(default=3, alias="PRICE_CAROUSEL")
    price_kie_seconds_per_credit: float = Field(default=5, alias="PRICE_KIE_SECONDS_PER_CREDIT")
    price_kling_per_second: float = Field(default=1, alias="PRICE_KLING_PER_SECOND")
    price_video_flat: float = Field(default=5, alias="PRICE_VIDEO_FLAT")
    price_safety: float = Field(default=25, alias="PRICE_SAFETY")

    # Identity
    session_ttl_days: int = Field(default=7, alias="SESSION_TTL_DAYS")

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins from comma-separated string."""
        return [origin.strip() for origin in self.cors_origins.split(",")]

    @property
    def claimed_stale_seconds(self) -> float:
        """Age of a claimed NEW job (from dispatch) after which no submit can still be running."""
        deadline = max(self.submit_deadline_seconds, self.video_upload_timeout_seconds)
        return deadline + self.claimed_stale_margin_seconds

    def pricing_table(self) -> PricingTable:
        """Build the immutable pricing table used by the cost function."""
        return PricingTable(
            image=self.price_image,
            carousel=self.price_carousel,
            kie_seconds_per_credit=self.price_kie_seconds_per_credit,
            kling_per_second=self.price_kling_per_second,
            video_flat=self.price_video_flat,
            safety=self.price_safety,
        )

    @model_validator(mode="after")
    def validate_required_config(self) -> "Settings":
        """Validate required configuration on startup.

        Fails fast with clear error messages if configuration is incomplete.
        Validation is skipped in test environments to avoid breaking tests.
        """
        if self.app_env in ("test", "testing"):
            return self

        missing = []

        # Image jobs and outpainting both run on Replicate
        if not self.replicate_api_token:
            missing.append(
                "REPLICATE_API_TOKEN: Get your API token from https://replicate.com/account/api-tokens"
            )

        # Every finished asset is re-hosted on Cloudinary
        if not (
            self.cloudinary_cloud_name and self.cloudinary_api_key and self.cloudinary_api_secret
        ):
            missing.append(
                "CLOUDINARY_CLOUD_NAME / CLOUDINARY_API_KEY / CLOUDINARY_API_SECRET: "
                "Copy them from https://console.cloudinary.com/settings/api-keys"
            )

        if missing:
            error_msg = "CRITICAL: Missing required environment variables:\n\n" + "\n".join(
                f"  - {m}" for m in missing
            )
            error_msg += "\n\nThe application cannot start without these variables."
            error_msg += "\nPlease update your .env file and restart."
            raise ValueError(error_msg)

        return self


def configure_logging(settings: Settings) -> None:
    """Configure structlog based on application environment.

    - Production: JSON output for log aggregation
    - Development: Console output for human readability
    """
    level = logging.getLevelName(settings.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    if settings.app_env == "production":
        structlog.configure(
            processors=[
                structlog.stdlib.add_log_level,
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                structlog.processors.JSONRenderer(),
            ],
            wrapper_class=structlog.make_filtering_bound_logger(level),
            context_class=dict,
            logger_factory=structlog.PrintLoggerFactory(),
            cache_logger_on_first_use=True,
        )
    else:
        structlog.configure(
            processors=[
                structlog.stdlib.add_log_level,
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.dev.ConsoleRenderer(),
            ],
            wrapper_class=structlog.make_filtering_bound_logger(level),
            context_class=dict,
            logger_factory=structlog.PrintLoggerFactory(),
            cache_logger_on_first_use=True,
        )
