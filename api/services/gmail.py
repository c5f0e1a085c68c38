"""
Gmail integration service for Identity Search.

Read-only search of sent and received mail via the Gmail API.
Live queries only (no bulk indexing).
"""
import base64
import logging
import re
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import getaddresses, parsedate_to_datetime
from typing import Optional

from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from api.services.google_auth import GoogleAuthService
from api.services.resilience import (
    SourceUnavailableError,
    TransientSourceError,
    HTTP_SOURCE_RETRY,
    is_retryable_status,
    retry_sync,
)

logger = logging.getLogger(__name__)

SOURCE_NAME = "gmail"


@dataclass
class EmailMessage:
    """Represents an email message."""
    message_id: str
    thread_id: str
    subject: str
    sender: str
    sender_name: str
    date: datetime
    snippet: str
    body: Optional[str] = None
    to: list[str] = field(default_factory=list)
    cc: list[str] = field(default_factory=list)
    labels: list[str] = field(default_factory=list)

    @property
    def is_sent(self) -> bool:
        return "SENT" in self.labels

    @property
    def recipients(self) -> list[str]:
        return self.to + self.cc

    @property
    def text(self) -> str:
        """Subject and body (or snippet) as one scannable string."""
        content = self.body or self.snippet or ""
        return f"{self.subject}\n{content}".strip()

    def to_dict(self) -> dict:
        """Convert to dict for API response."""
        return {
            "message_id": self.message_id,
            "thread_id": self.thread_id,
            "subject": self.subject,
            "sender": self.sender,
            "sender_name": self.sender_name,
            "date": self.date.isoformat(),
            "snippet": self.snippet,
            "to": self.to,
            "cc": self.cc,
            "labels": self.labels,
            "source": "gmail",
        }


def build_gmail_query(
    keywords: Optional[str] = None,
    phrase: Optional[str] = None,
    sent: Optional[bool] = None,
    after: Optional[datetime] = None,
) -> str:
    """
    Build Gmail search query string.

    Args:
        keywords: Keywords to search in body/subject
        phrase: Exact phrase (quoted)
        sent: True for sent mail only, False to exclude sent mail
        after: Emails after this date

    Returns:
        Gmail query string
    """
    parts = []

    if keywords:
        parts.append(keywords)

    if phrase:
        parts.append(f'"{phrase.replace(chr(34), "")}"')

    if sent is True:
        parts.append("in:sent")
    elif sent is False:
        parts.append("-in:sent")

    if after:
        # Gmail uses YYYY/MM/DD format
        parts.append(f"after:{after.strftime('%Y/%m/%d')}")

    return " ".join(parts)


def parse_sender(from_header: str) -> tuple[str, str]:
    """
    Parse From header into name and email.

    Args:
        from_header: Raw From header value

    Returns:
        Tuple of (sender_name, sender_email)
    """
    # Pattern: "Name <email@example.com>" or just "email@example.com"
    match = re.match(r'^"?([^"<]+)"?\s*<([^>]+)>$', from_header.strip())
    if match:
        return match.group(1).strip(), match.group(2).strip()

    return from_header.strip(), from_header.strip()


def parse_address_list(header: Optional[str]) -> list[str]:
    """Email addresses from a To/Cc header value."""
    if not header:
        return []
    return [addr.strip() for _, addr in getaddresses([header]) if addr and "@" in addr]


class GmailService:
    """
    Gmail service for searching emails.

    Includes rate limiting to prevent quota issues.
    """

    def __init__(self, auth: GoogleAuthService, rate_limit_delay: float = 0.1):
        """
        Initialize Gmail service.

        Args:
            auth: Credential loader for the account to read
            rate_limit_delay: Delay between API calls (seconds)
        """
        self.auth = auth
        self.rate_limit_delay = rate_limit_delay
        self._service = None
        self._last_call_time = 0.0
        self._user_email: Optional[str] = None

    @property
    def service(self):
        """Get or create Gmail API service."""
        if self._service is None:
            credentials = self.auth.get_credentials()
            self._service = build("gmail", "v1", credentials=credentials, cache_discovery=False)
        return self._service

    def _rate_limit(self):
        """Apply rate limiting between API calls."""
        now = time.time()
        elapsed = now - self._last_call_time
        if elapsed < self.rate_limit_delay:
            time.sleep(self.rate_limit_delay - elapsed)
        self._last_call_time = time.time()

    @retry_sync(HTTP_SOURCE_RETRY)
    def _execute(self, request):
        """Execute an API request, mapping HTTP failures onto source errors."""
        self._rate_limit()
        try:
            return request.execute()
        except HttpError as e:
            status = e.resp.status
            if is_retryable_status(status):
                raise TransientSourceError(SOURCE_NAME, f"Gmail API error {status}") from e
            raise SourceUnavailableError(SOURCE_NAME, f"Gmail API error {status}: {e}") from e

    def get_user_email(self) -> Optional[str]:
        """The authenticated account's own address."""
        if self._user_email is None:
            profile = self._execute(self.service.users().getProfile(userId="me"))
            self._user_email = profile.get("emailAddress")
        return self._user_email

    def search(self, query: str, max_results: int = 20, include_body: bool = False) -> list[EmailMessage]:
        """
        Search emails.

        Args:
            query: Gmail query string (see build_gmail_query)
            max_results: Maximum messages to return
            include_body: Whether to fetch full bodies

        Returns:
            List of EmailMessage objects

        Raises:
            SourceUnavailableError: If Gmail can't be reached or authorized
        """
        if not query:
            return []

        result = self._execute(
            self.service.users().messages().list(userId="me", q=query, maxResults=max_results)
        )
        messages = result.get("messages", [])

        email_messages = []
        for msg in messages:
            message = self.get_message(msg["id"], include_body=include_body)
            if message:
                email_messages.append(message)

        return email_messages

    def get_message(self, message_id: str, include_body: bool = True) -> Optional[EmailMessage]:
        """
        Get a specific email message.

        Returns:
            EmailMessage, or None if it can't be fetched or parsed
        """
        format_type = "full" if include_body else "metadata"
        try:
            msg = self._execute(
                self.service.users().messages().get(
                    userId="me",
                    id=message_id,
                    format=format_type,
                    metadataHeaders=["Subject", "From", "To", "Cc", "Date"] if not include_body else None,
                )
            )
        except SourceUnavailableError as e:
            logger.warning(f"Failed to get message {message_id}: {e.message}")
            return None

        return self._parse_message(msg, include_body)

    def _parse_message(self, msg: dict, include_body: bool = False) -> Optional[EmailMessage]:
        """
        Parse raw Gmail API message into EmailMessage.

        Args:
            msg: Raw message dict from API
            include_body: Whether to parse body

        Returns:
            EmailMessage or None if parsing fails
        """
        try:
            payload = msg.get("payload", {})
            headers = {
                h.get("name", "").lower(): h.get("value", "")
                for h in payload.get("headers", [])
            }

            sender_name, sender = parse_sender(headers.get("from", ""))

            try:
                date = parsedate_to_datetime(headers.get("date", ""))
            except (TypeError, ValueError):
                date = datetime.now(timezone.utc)

            return EmailMessage(
                message_id=msg.get("id", ""),
                thread_id=msg.get("threadId", ""),
                subject=headers.get("subject", ""),
                sender=sender,
                sender_name=sender_name,
                date=date,
                snippet=msg.get("snippet", ""),
                body=self._extract_body(payload) if include_body else None,
                to=parse_address_list(headers.get("to")),
                cc=parse_address_list(headers.get("cc")),
                labels=msg.get("labelIds", []),
            )

        except Exception as e:
            logger.warning(f"Failed to parse message: {e}")
            return None

    def _extract_body(self, payload: dict) -> Optional[str]:
        """
        Extract the plain-text email body from a payload (depth-first).

        Returns:
            Plain text body or None
        """
        if payload.get("mimeType", "text/plain") == "text/plain":
            data = payload.get("body", {}).get("data")
            if data:
                try:
                    return base64.urlsafe_b64decode(data).decode("utf-8")
                except (ValueError, UnicodeDecodeError):
                    pass

        for part in payload.get("parts", []):
            body = self._extract_body(part)
            if body:
                return body

        return None


# Singleton instance
_gmail_service: Optional[GmailService] = None


def get_gmail_service() -> GmailService:
    """Get or create the GmailService for the configured token."""
    global _gmail_service
    if _gmail_service is None:
        from config.settings import settings
        _gmail_service = GmailService(GoogleAuthService(settings.gmail_token_path))
    return _gmail_service
