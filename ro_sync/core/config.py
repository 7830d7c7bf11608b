"""Application configuration with environment variables."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Environment
    ENV: str = "dev"

    # Database (store of record)
    DATABASE_URL: str

    # Microsoft identity (per-user delegated tokens, refreshed on demand)
    MS_CLIENT_ID: str = ""
    MS_CLIENT_SECRET: str = ""
    MS_TOKEN_URL: str = "https://login.microsoftonline.com/common/oauth2/v2.0/token"
    MS_GRAPH_BASE_URL: str = "https://graph.microsoft.com/v1.0"
    MS_SCOPES: str = (
        "openid profile email User.Read Files.ReadWrite.All Sites.ReadWrite.All "
        "Mail.Send Mail.Read Tasks.ReadWrite Calendars.ReadWrite offline_access"
    )
    GRAPH_TIMEOUT_SECONDS: float = 30.0

    # Workbook location. SharePoint is used when both values are set,
    # otherwise the workbook is resolved from the user's OneDrive.
    SHAREPOINT_HOSTNAME: str = ""
    SHAREPOINT_SITE_PATH: str = ""
    EXCEL_WORKBOOK_ID: str = ""
    EXCEL_ACTIVE_SHEET: str = "Active"

    # Token Encryption (for storing OAuth refresh tokens)
    FERNET_KEY: str = ""  # Generate with: python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"

    # Follow-up templating
    COMPANY_NAME: str = "GenThrust"
    COMPANY_EMAIL: str = ""
    FOLLOW_UP_CC_EMAIL: str = ""
    FOLLOW_UP_INTERVAL_DAYS: int = 7
    OVERDUE_WAITING_QUOTE_DAYS: int = 7
    RO_DISPLAY_PREFIX: str = "G"  # RO# G1234 in subjects

    # Daily overdue sweep (runs as this mailbox owner; disabled when empty)
    OVERDUE_SWEEP_USER_ID: str = ""
    OVERDUE_SWEEP_HOUR_UTC: int = 8

    # Worker
    WORKER_POLL_INTERVAL: int = 10
    WORKER_BATCH_SIZE: int = 10
    JOB_MAX_ATTEMPTS: int = 3
    JOB_RETRY_BACKOFF_SECONDS: int = 30

    @property
    def uses_sharepoint(self) -> bool:
        return bool(self.SHAREPOINT_HOSTNAME and self.SHAREPOINT_SITE_PATH)


settings = Settings()
