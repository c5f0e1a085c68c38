"""
Google credentials for Identity Search.

Loads an authorized-user token produced elsewhere (any installed-app consent
flow) and refreshes it when expired. The interactive consent flow itself is not
run here; without a usable token the Gmail source is simply unavailable.
"""
import logging
from pathlib import Path
from typing import Optional

from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials

from api.services.resilience import SourceUnavailableError

logger = logging.getLogger(__name__)

GMAIL_SCOPES = [
    "https://www.googleapis.com/auth/gmail.readonly",
]

SOURCE_NAME = "gmail"


class GoogleAuthService:
    """
    Google token loader.

    Handles:
    - Loading credentials from the token file
    - Automatic token refresh (the refreshed token is written back)
    """

    def __init__(self, token_path: Path | str, scopes: Optional[list[str]] = None):
        """
        Args:
            token_path: Path to the authorized-user token JSON file
            scopes: Scopes the token must carry
        """
        self.token_path = Path(token_path).expanduser()
        self.scopes = scopes or GMAIL_SCOPES
        self._credentials: Optional[Credentials] = None

    def get_credentials(self) -> Credentials:
        """
        Get valid Google credentials.

        Raises:
            SourceUnavailableError: If there is no token or it can't be refreshed
        """
        if self._credentials and self._credentials.valid:
            return self._credentials

        if not self.token_path.exists():
            raise SourceUnavailableError(
                SOURCE_NAME, f"No Google token at {self.token_path}"
            )

        try:
            credentials = Credentials.from_authorized_user_file(
                str(self.token_path),
                self.scopes
            )
        except (ValueError, OSError) as e:
            raise SourceUnavailableError(SOURCE_NAME, f"Invalid Google token: {e}") from e

        if credentials.valid:
            self._credentials = credentials
            return credentials

        if credentials.expired and credentials.refresh_token:
            try:
                logger.info("Refreshing expired Google token")
                credentials.refresh(Request())
            except Exception as e:
                raise SourceUnavailableError(
                    SOURCE_NAME, f"Token refresh failed (may be revoked): {e}"
                ) from e
            self._save_token(credentials)
            self._credentials = credentials
            return credentials

        raise SourceUnavailableError(SOURCE_NAME, "Google token is not valid and cannot be refreshed")

    def _save_token(self, credentials: Credentials) -> None:
        try:
            self.token_path.write_text(credentials.to_json())
            logger.info(f"Saved refreshed token to {self.token_path}")
        except OSError as e:
            logger.warning(f"Could not save refreshed token: {e}")

    @property
    def is_authenticated(self) -> bool:
        """Check if we have a token that is valid or refreshable."""
        if not self.token_path.exists():
            return False

        try:
            creds = Credentials.from_authorized_user_file(
                str(self.token_path),
                self.scopes
            )
            return bool(creds.valid or (creds.expired and creds.refresh_token))
        except (ValueError, OSError):
            return False
