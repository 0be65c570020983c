"""Application configuration using pydantic-settings.

Every value can be provided through the environment or a local ``.env`` file.
"""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from charger.errors import ConfigurationError


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ======================
    # API
    # ======================
    api_host: str = Field(default="0.0.0.0", description="API server host")
    port: int = Field(default=8000, description="API server port")
    service_url: str = Field(
        default="", description="Public base URL used to build LNURL callbacks"
    )

    # ======================
    # Environment
    # ======================
    environment: str = Field(default="development", description="Runtime environment")
    debug: bool = Field(default=False, description="Enable debug mode")

    # ======================
    # Payment gateway (Spark / c-lightning)
    # ======================
    gateway: str = Field(default="spark", description="Payment gateway: spark or dryrun")
    spark_url: str = Field(default="", description="Spark RPC endpoint")
    spark_token: str = Field(default="", description="Spark access key")
    spark_call_timeout: float = Field(
        default=60.0, description="Overall timeout for every gateway call (seconds)"
    )
    spark_verify_tls: bool = Field(
        default=False, description="Verify Spark TLS certificates"
    )

    # ======================
    # Deposit address provider
    # ======================
    provider: str = Field(
        default="golightning", description="Deposit address provider: golightning or dryrun"
    )
    deposit_service_url: str = Field(
        default="https://api.golightning.club/new",
        description="On-chain to Lightning swap endpoint",
    )
    deposit_service_timeout: float = Field(
        default=30.0, description="Deposit service request timeout (seconds)"
    )

    # ======================
    # Invoices and withdrawals
    # ======================
    invoice_expiry: int = Field(
        default=1204800, description="Deposit invoice expiry (seconds)"
    )
    label_prefix: str = Field(
        default="inv-espera-", description="Prefix of the per-user invoice label"
    )
    withdraw_description: str = Field(
        default="charger.alhur.es withdraw",
        description="Default description offered to withdrawing wallets",
    )

    # ======================
    # Sessions
    # ======================
    session_ttl: int = Field(
        default=86400, description="Idle session lifetime in seconds (0 = never expire)"
    )
    session_sweep_interval: int = Field(
        default=300, description="Seconds between expired session sweeps"
    )

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment.lower() == "production"

    @property
    def base_url(self) -> str:
        """Service URL without a trailing slash."""
        return self.service_url.rstrip("/")

    def label_for(self, pubkey: str) -> str:
        """Derive the invoice label that identifies a user's withdrawal intent."""
        return f"{self.label_prefix}{pubkey}"

    def validate_required(self) -> None:
        """Fail fast on settings the service cannot run without.

        Raises:
            ConfigurationError: If a required value is missing
        """
        missing = []
        if not self.service_url:
            missing.append("SERVICE_URL")
        if self.gateway.lower() == "spark":
            if not self.spark_url:
                missing.append("SPARK_URL")
            if not self.spark_token:
                missing.append("SPARK_TOKEN")
        if missing:
            raise ConfigurationError(f"Missing required settings: {', '.join(missing)}")

    def get_safe_dict(self) -> dict:
        """Return settings dict with secrets redacted."""
        return {
            "environment": self.environment,
            "debug": self.debug,
            "service_url": self.service_url or "(not set)",
            "gateway": {
                "type": self.gateway,
                "url": self.spark_url or "(not set)",
                "token": "***" if self.spark_token else "(not set)",
                "timeout": self.spark_call_timeout,
            },
            "provider": {
                "type": self.provider,
                "url": self.deposit_service_url,
            },
            "invoice_expiry": self.invoice_expiry,
            "session_ttl": self.session_ttl,
        }


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
