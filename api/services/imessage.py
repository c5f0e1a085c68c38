"""
iMessage integration for Identity Search.

Reads message history directly from the macOS Messages database. The database
is always opened read-only and a fresh connection is used per call; nothing is
cached between calls.

Privacy note: This reads from ~/Library/Messages/chat.db which requires
Full Disk Access permission in System Preferences.
"""
import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Iterable, Optional

from api.services.attributed_body import extract_attributed_text
from api.services.handle_utils import PHONE_DIGITS, classify_handle, HandleKind, normalize_phone
from api.services.resilience import SourceUnavailableError
from api.utils.datetime_utils import make_aware

logger = logging.getLogger(__name__)

# Apple's epoch starts at 2001-01-01 00:00:00 UTC
# Dates are stored in nanoseconds
APPLE_EPOCH = datetime(2001, 1, 1, tzinfo=timezone.utc)
APPLE_EPOCH_OFFSET = 978307200  # Seconds from Unix epoch to Apple epoch
NANOS_PER_MICROSECOND = 1_000

SOURCE_NAME = "imessage"

TEXT_SOURCE_TEXT = "text"
TEXT_SOURCE_ATTRIBUTED = "attributed_body"

# Base query; every caller appends WHERE clauses then GROUP BY/ORDER BY/LIMIT.
# Messages without text or attributedBody (attachments, reactions) are skipped.
_MESSAGE_SELECT = """
    SELECT
        m.ROWID AS message_id,
        m.text,
        m.attributedBody,
        m.date,
        m.is_from_me,
        h.id AS handle,
        c.chat_identifier,
        c.display_name AS chat_name
    FROM message m
    LEFT JOIN handle h ON m.handle_id = h.ROWID
    LEFT JOIN chat_message_join cmj ON cmj.message_id = m.ROWID
    LEFT JOIN chat c ON c.ROWID = cmj.chat_id
    WHERE (m.text IS NOT NULL OR m.attributedBody IS NOT NULL)
"""


def apple_timestamp_to_datetime(apple_ts: Optional[int]) -> Optional[datetime]:
    """
    Convert Apple timestamp (nanoseconds since 2001-01-01) to datetime.

    Integer arithmetic keeps the conversion exact at microsecond resolution.

    Args:
        apple_ts: Apple timestamp in nanoseconds

    Returns:
        UTC datetime or None if invalid
    """
    if apple_ts is None:
        return None
    try:
        return APPLE_EPOCH + timedelta(microseconds=int(apple_ts) // NANOS_PER_MICROSECOND)
    except (ValueError, OverflowError, TypeError):
        return None


def datetime_to_apple_timestamp(dt: datetime) -> int:
    """
    Convert datetime to Apple timestamp (nanoseconds since 2001-01-01).

    Naive datetimes are taken as UTC.

    Args:
        dt: datetime to convert

    Returns:
        Apple timestamp in nanoseconds
    """
    delta = make_aware(dt) - APPLE_EPOCH
    return (delta // timedelta(microseconds=1)) * NANOS_PER_MICROSECOND


@dataclass
class MessageRecord:
    """A single iMessage/SMS message as stored in chat.db."""

    message_id: int  # ROWID in chat.db (arrival order)
    text: Optional[str]
    attributed_body: Optional[bytes]
    date_raw: Optional[int]  # Apple nanoseconds
    is_from_me: bool
    handle: Optional[str] = None  # Phone number or email (raw from iMessage)
    chat_identifier: Optional[str] = None
    chat_name: Optional[str] = None

    resolved_text: Optional[str] = field(init=False, default=None)
    text_source: Optional[str] = field(init=False, default=None)

    def __post_init__(self):
        # Prefer the plain text column, then attributedBody
        if self.text and self.text.strip():
            self.resolved_text = self.text
            self.text_source = TEXT_SOURCE_TEXT
        elif self.attributed_body:
            extracted = extract_attributed_text(self.attributed_body)
            if extracted:
                self.resolved_text = extracted.text
                self.text_source = f"{TEXT_SOURCE_ATTRIBUTED}:{extracted.method}"

    @property
    def timestamp(self) -> Optional[datetime]:
        return apple_timestamp_to_datetime(self.date_raw)

    @property
    def counterpart(self) -> Optional[str]:
        """The other party: sender/recipient handle, else the chat identifier."""
        return self.handle or self.chat_identifier

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "MessageRecord":
        body = row["attributedBody"]
        return cls(
            message_id=row["message_id"],
            text=row["text"],
            attributed_body=bytes(body) if body is not None else None,
            date_raw=row["date"],
            is_from_me=bool(row["is_from_me"]),
            handle=row["handle"],
            chat_identifier=row["chat_identifier"],
            chat_name=row["chat_name"],
        )

    def to_dict(self, text_length: Optional[int] = None) -> dict:
        """Convert to dict for JSON serialization."""
        text = self.resolved_text or ""
        if text_length is not None:
            text = text[:text_length]
        ts = self.timestamp
        return {
            "message_id": self.message_id,
            "text": text,
            "text_source": self.text_source,
            "date": ts.isoformat() if ts else None,
            "is_from_me": self.is_from_me,
            "handle": self.handle,
            "chat_identifier": self.chat_identifier,
            "chat_name": self.chat_name,
        }


def _handle_clause(handles: Iterable[str]) -> tuple[str, list]:
    """
    SQL clause matching a message's handle or chat identifier against handles.

    Phones match exactly, or on the same last 10 digits when they have a full
    10; shorter fragments only match exactly. Emails match case-insensitively.
    """
    parts = []
    params: list = []
    for raw in handles:
        if not raw:
            continue
        if classify_handle(raw) == HandleKind.EMAIL:
            parts.append("LOWER(h.id) = LOWER(?) OR LOWER(c.chat_identifier) = LOWER(?)")
            params.extend([raw.strip(), raw.strip()])
            continue

        parts.append("h.id = ? OR c.chat_identifier = ?")
        params.extend([raw, raw])
        digits = normalize_phone(raw)
        if len(digits) == PHONE_DIGITS:
            parts.append("h.id LIKE ? OR c.chat_identifier LIKE ?")
            params.extend([f"%{digits}", f"%{digits}"])

    if not parts:
        return "", []
    return " AND (" + " OR ".join(f"({p})" for p in parts) + ")", params


class IMessageDatabase:
    """
    Read-only access to the macOS Messages database.

    Provides:
    - Recent messages with direction / handle / date filters
    - Chat neighbors by ROWID for search context
    - Raw LIKE lookup of handles by fragment
    """

    def __init__(self, db_path: Path | str):
        self.db_path = Path(db_path).expanduser()

    def _connect(self) -> sqlite3.Connection:
        """Open a read-only connection or raise SourceUnavailableError."""
        if not self.db_path.exists():
            raise SourceUnavailableError(
                SOURCE_NAME,
                f"Messages database not found at {self.db_path}. "
                "Ensure Full Disk Access is granted."
            )
        try:
            conn = sqlite3.connect(f"file:{self.db_path}?mode=ro", uri=True)
        except sqlite3.Error as e:
            raise SourceUnavailableError(
                SOURCE_NAME, f"Cannot open Messages database: {e}"
            ) from e
        conn.row_factory = sqlite3.Row
        return conn

    def _query(self, sql: str, params: list) -> list[MessageRecord]:
        conn = self._connect()
        try:
            rows = conn.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise SourceUnavailableError(
                SOURCE_NAME, f"Messages query failed: {e}"
            ) from e
        finally:
            conn.close()
        return [MessageRecord.from_row(row) for row in rows]

    def recent_messages(
        self,
        limit: int,
        direction: Optional[str] = None,  # "sent", "received", or None for both
        handles: Optional[Iterable[str]] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> list[MessageRecord]:
        """
        Most recent messages, newest first.

        Args:
            limit: Maximum rows to return
            direction: "sent" for is_from_me=1, "received" for is_from_me=0
            handles: Only messages with these handles (or chats with them)
            since: Only messages at or after this datetime
            until: Only messages at or before this datetime

        Returns:
            List of MessageRecord objects, ordered by date DESC
        """
        sql = _MESSAGE_SELECT
        params: list = []

        if direction == "sent":
            sql += " AND m.is_from_me = 1"
        elif direction == "received":
            sql += " AND m.is_from_me = 0"

        if handles is not None:
            clause, clause_params = _handle_clause(handles)
            if not clause:
                return []
            sql += clause
            params.extend(clause_params)

        if since:
            sql += " AND m.date >= ?"
            params.append(datetime_to_apple_timestamp(since))

        if until:
            sql += " AND m.date <= ?"
            params.append(datetime_to_apple_timestamp(until))

        sql += " GROUP BY m.ROWID ORDER BY m.date DESC LIMIT ?"
        params.append(limit)

        return self._query(sql, params)

    def get_neighbors(
        self,
        message: MessageRecord,
        count: int,
    ) -> tuple[list[MessageRecord], list[MessageRecord]]:
        """
        Text-bearing messages around a message in the same chat, by ROWID.

        Returns:
            (before, after), each in chronological order and at most count long
        """
        if count <= 0:
            return [], []

        if message.chat_identifier:
            scope, scope_param = " AND c.chat_identifier = ?", message.chat_identifier
        elif message.handle:
            scope, scope_param = " AND h.id = ?", message.handle
        else:
            return [], []

        # Over-fetch so rows whose text can't be recovered don't starve the window
        fetch = count * 3

        before = self._query(
            _MESSAGE_SELECT + scope + " AND m.ROWID < ? GROUP BY m.ROWID ORDER BY m.ROWID DESC LIMIT ?",
            [scope_param, message.message_id, fetch],
        )
        after = self._query(
            _MESSAGE_SELECT + scope + " AND m.ROWID > ? GROUP BY m.ROWID ORDER BY m.ROWID ASC LIMIT ?",
            [scope_param, message.message_id, fetch],
        )

        before = [m for m in before if m.resolved_text][:count]
        after = [m for m in after if m.resolved_text][:count]
        before.reverse()
        return before, after

    def find_handles_like(self, fragment: str, limit: int = 50) -> list[str]:
        """
        Raw handles whose id, chat identifier or chat display name contains fragment.

        Used as the last-resort contact lookup when neither Contacts nor evidence
        can resolve a name.
        """
        fragment = (fragment or "").strip()
        if not fragment:
            return []

        pattern = f"%{fragment}%"
        conn = self._connect()
        try:
            rows = conn.execute(
                """
                SELECT DISTINCT COALESCE(h.id, c.chat_identifier) AS handle
                FROM message m
                LEFT JOIN handle h ON m.handle_id = h.ROWID
                LEFT JOIN chat_message_join cmj ON cmj.message_id = m.ROWID
                LEFT JOIN chat c ON c.ROWID = cmj.chat_id
                WHERE h.id LIKE ? OR c.chat_identifier LIKE ? OR c.display_name LIKE ?
                LIMIT ?
                """,
                (pattern, pattern, pattern, limit),
            ).fetchall()
        except sqlite3.Error as e:
            raise SourceUnavailableError(
                SOURCE_NAME, f"Handle lookup failed: {e}"
            ) from e
        finally:
            conn.close()

        return [row["handle"] for row in rows if row["handle"]]


# Singleton instance
_imessage_db: Optional[IMessageDatabase] = None


def get_imessage_db(db_path: Optional[Path | str] = None) -> IMessageDatabase:
    """
    Get or create the singleton IMessageDatabase.

    Args:
        db_path: Path to chat.db (defaults to settings.messages_db_path)

    Returns:
        IMessageDatabase instance
    """
    global _imessage_db
    if _imessage_db is None:
        from config.settings import settings
        _imessage_db = IMessageDatabase(db_path or settings.messages_db_path)
    return _imessage_db
