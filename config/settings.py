"""
Identity Search Configuration Settings
"""
from pathlib import Path
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Local data stores (use IDSEARCH_ prefix)
    messages_db_path: Path = Field(
        default=Path.home() / "Library" / "Messages" / "chat.db",
        alias="IDSEARCH_MESSAGES_DB",
        description="Path to the macOS Messages database (read-only)"
    )
    address_book_dir: Path = Field(
        default=Path.home() / "Library" / "Application Support" / "AddressBook",
        alias="IDSEARCH_ADDRESS_BOOK_DIR",
        description="AddressBook directory holding AddressBook-v22.abcddb and Sources/"
    )

    # Server
    port: int = Field(default=8000, alias="IDSEARCH_PORT")
    host: str = Field(default="127.0.0.1", alias="IDSEARCH_HOST")
    log_level: str = Field(default="INFO", alias="IDSEARCH_LOG_LEVEL")

    # Clay CRM (no prefix - standard env var name)
    clay_api_key: str = Field(default="", alias="CLAY_API_KEY")
    clay_search_url: str = Field(
        default="https://search.clay.earth",
        alias="IDSEARCH_CLAY_SEARCH_URL",
        description="Clay search API base URL"
    )
    clay_timeout: float = Field(default=15.0, alias="IDSEARCH_CLAY_TIMEOUT")

    # Gmail
    # The token file is produced by a separate consent flow; it is only read here.
    gmail_token_path: Path = Field(
        default=Path.home() / ".config" / "identity-search" / "gmail-token.json",
        alias="IDSEARCH_GMAIL_TOKEN_PATH",
        description="Authorized-user token JSON for the Gmail API"
    )
    gmail_user_email: str = Field(
        default="",
        alias="IDSEARCH_GMAIL_USER_EMAIL",
        description="Your own address, excluded from recipient attribution (looked up if empty)"
    )

    # Evidence collection windows
    evidence_scan_limit: int = Field(
        default=5000,
        alias="IDSEARCH_EVIDENCE_SCAN_LIMIT",
        description="Most recent records scanned per pass when collecting evidence"
    )
    evidence_max_examples: int = Field(default=5, alias="IDSEARCH_EVIDENCE_MAX_EXAMPLES")
    snippet_length: int = Field(default=200, alias="IDSEARCH_SNIPPET_LENGTH")
    gmail_scan_limit: int = Field(
        default=100,
        alias="IDSEARCH_GMAIL_SCAN_LIMIT",
        description="Messages fetched per Gmail evidence pass (each costs an API call)"
    )

    # Message search
    search_scan_limit: int = Field(
        default=5000,
        alias="IDSEARCH_SEARCH_SCAN_LIMIT",
        description="Maximum rows examined per search before giving up"
    )

    @property
    def clay_enabled(self) -> bool:
        """Check if Clay CRM is configured."""
        return bool(self.clay_api_key)

    @property
    def gmail_enabled(self) -> bool:
        """Check if a Gmail token is available."""
        return Path(self.gmail_token_path).expanduser().exists()


settings = Settings()
