import json
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

from push_engine.features.push_notifications.domain.errors import CredentialError
from push_engine.features.push_notifications.domain.models import ServiceAccountKey

ENV_PATH = Path(__file__).resolve().parent.parent / ".env.local"


class Settings(BaseSettings):
    # Environment settings
    environment: str = "development"
    debug: bool = False
    LOG_LEVEL: str = "INFO"

    # Supabase settings
    SUPABASE_URL: str | None = None
    SUPABASE_JWKS_URL: str | None = None
    SUPABASE_DB_URL: str

    # Firebase (push gateway) settings
    FIREBASE_SERVICE_ACCOUNT_JSON: str | None = None
    FIREBASE_PROJECT_ID: str | None = None

    # =================================================================
    # SCHEDULING POLICY - one fixed service offset for every day count
    # =================================================================
    SERVICE_UTC_OFFSET_HOURS: int = 4  # Baku
    SEND_WINDOW_START_HOUR: int = 9
    SEND_WINDOW_END_HOUR: int = 24  # exclusive, 24 == midnight
    PUSH_COOLDOWN_MINUTES: int = 120

    # =================================================================
    # DISPATCH SETTINGS
    # =================================================================
    DISPATCH_BATCH_SIZE: int = 100
    DISPATCH_MAX_CONCURRENCY: int = 50
    PUSH_REQUEST_TIMEOUT: float = 10.0
    TOKEN_REQUEST_TIMEOUT: float = 10.0
    TOKEN_EXPIRY_SKEW_SECONDS: int = 60

    # =================================================================
    # DATABASE POOL SETTINGS
    # =================================================================
    DB_POOL_MIN_SIZE: int = 1
    DB_POOL_MAX_SIZE: int = 10
    DB_POOL_TIMEOUT: float = 30.0
    DB_POOL_MAX_IDLE: float = 300.0  # 5 minutes
    DB_POOL_MAX_LIFETIME: float = 3600.0  # 1 hour

    model_config = SettingsConfigDict(
        env_file=str(ENV_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def jwks_url(self) -> str | None:
        if self.SUPABASE_JWKS_URL:
            return self.SUPABASE_JWKS_URL
        if not self.SUPABASE_URL:
            return None
        base = self.SUPABASE_URL.rstrip("/")
        return f"{base}/auth/v1/.well-known/jwks.json"

    def service_account_key(self) -> ServiceAccountKey:
        """
        Parse the Firebase service account JSON from configuration.

        Raises:
            CredentialError: If the key is missing, not JSON, or incomplete
        """
        if not self.FIREBASE_SERVICE_ACCOUNT_JSON:
            raise CredentialError(
                "FIREBASE_SERVICE_ACCOUNT_JSON not configured", error_code="not_configured"
            )

        try:
            data = json.loads(self.FIREBASE_SERVICE_ACCOUNT_JSON)
        except json.JSONDecodeError as e:
            raise CredentialError(
                f"Service account JSON is invalid: {e}", error_code="invalid_json"
            ) from e

        if not isinstance(data, dict):
            raise CredentialError("Service account JSON must be an object", error_code="invalid_json")

        project_id = self.FIREBASE_PROJECT_ID or data.get("project_id")
        missing = [
            name
            for name, value in (
                ("client_email", data.get("client_email")),
                ("private_key", data.get("private_key")),
                ("project_id", project_id),
            )
            if not value
        ]
        if missing:
            raise CredentialError(
                f"Service account JSON missing fields: {', '.join(missing)}",
                error_code="incomplete_key",
            )

        return ServiceAccountKey(
            client_email=data["client_email"],
            private_key_pem=data["private_key"],
            project_id=project_id,
        )

    def get_db_pool_config(self) -> dict:
        """
        Get database pool configuration.

        Batch runs are short-lived, so development keeps the pool small.
        """
        config = {
            "min_size": self.DB_POOL_MIN_SIZE,
            "max_size": self.DB_POOL_MAX_SIZE,
            "timeout": self.DB_POOL_TIMEOUT,
            "max_idle": self.DB_POOL_MAX_IDLE,
            "max_lifetime": self.DB_POOL_MAX_LIFETIME,
        }

        if self.environment == "development":
            config.update({"min_size": 1, "max_size": 5, "timeout": 15.0})

        return config


settings = Settings()
