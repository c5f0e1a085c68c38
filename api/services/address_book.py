"""
AddressBook (Contacts.app) database reader for Identity Search.

Reads contact records straight from the Contacts SQLite stores on disk:
the main AddressBook-v22.abcddb plus one per synced account under Sources/.
Databases are opened read-only.

Requires Full Disk Access (or Contacts access) for the running process.
"""
import logging
import sqlite3
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator, Optional, Protocol

from api.services.resilience import SourceUnavailableError

logger = logging.getLogger(__name__)

ADDRESS_BOOK_FILENAME = "AddressBook-v22.abcddb"

SOURCE_NAME = "contacts"


@dataclass
class DirectoryRecord:
    """One person or organization from a directory source."""
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    nickname: Optional[str] = None
    organization: Optional[str] = None
    handles: list[str] = field(default_factory=list)  # raw phones and emails
    source: str = ""  # where it came from, for logging

    @property
    def display_name(self) -> Optional[str]:
        """Get display name with fallbacks."""
        first = (self.first_name or "").strip()
        last = (self.last_name or "").strip()
        if first and last:
            return f"{first} {last}"
        for value in (first, last, self.nickname, self.organization):
            if value and value.strip():
                return value.strip()
        return None

    def search_terms(self) -> list[str]:
        """Lowercased terms this record can be found by."""
        first = (self.first_name or "").strip().lower()
        last = (self.last_name or "").strip().lower()
        terms = [
            first,
            last,
            (self.nickname or "").strip().lower(),
            (self.organization or "").strip().lower(),
        ]
        if first and last:
            terms.append(f"{first} {last}")
            terms.append(f"{last} {first}")
        return [t for t in terms if t]


class DirectorySource(Protocol):
    """Anything that can enumerate DirectoryRecords."""

    name: str

    def iter_records(self) -> Iterator[DirectoryRecord]:
        ...


class AddressBookSource:
    """
    Reader for a single AddressBook-v22.abcddb file.

    Joins ZABCDRECORD with its phone numbers and email addresses and yields one
    DirectoryRecord per contact row.
    """

    def __init__(self, db_path: Path | str):
        self.db_path = Path(db_path)
        self.name = str(self.db_path)

    def iter_records(self) -> Iterator[DirectoryRecord]:
        if not self.db_path.exists():
            raise SourceUnavailableError(SOURCE_NAME, f"AddressBook not found at {self.db_path}")

        try:
            conn = sqlite3.connect(f"file:{self.db_path}?mode=ro", uri=True)
        except sqlite3.Error as e:
            raise SourceUnavailableError(SOURCE_NAME, f"Cannot open {self.db_path}: {e}") from e

        conn.row_factory = sqlite3.Row
        try:
            records: dict[int, DirectoryRecord] = {}
            for row in conn.execute(
                "SELECT Z_PK, ZFIRSTNAME, ZLASTNAME, ZNICKNAME, ZORGANIZATION FROM ZABCDRECORD"
            ):
                records[row["Z_PK"]] = DirectoryRecord(
                    first_name=row["ZFIRSTNAME"],
                    last_name=row["ZLASTNAME"],
                    nickname=row["ZNICKNAME"],
                    organization=row["ZORGANIZATION"],
                    source=self.name,
                )

            for row in conn.execute(
                "SELECT ZOWNER, ZFULLNUMBER FROM ZABCDPHONENUMBER WHERE ZFULLNUMBER IS NOT NULL"
            ):
                record = records.get(row["ZOWNER"])
                if record is not None:
                    record.handles.append(row["ZFULLNUMBER"])

            for row in conn.execute(
                "SELECT ZOWNER, ZADDRESS FROM ZABCDEMAILADDRESS WHERE ZADDRESS IS NOT NULL"
            ):
                record = records.get(row["ZOWNER"])
                if record is not None:
                    record.handles.append(row["ZADDRESS"])

        except sqlite3.Error as e:
            raise SourceUnavailableError(SOURCE_NAME, f"Cannot read {self.db_path}: {e}") from e
        finally:
            conn.close()

        logger.debug(f"Read {len(records)} records from {self.db_path}")
        yield from records.values()


def discover_address_book_databases(base_dir: Path | str) -> list[Path]:
    """
    Find the main AddressBook database plus every per-account one.

    Args:
        base_dir: ~/Library/Application Support/AddressBook

    Returns:
        Existing database paths, main first, then Sources/* in name order
    """
    base = Path(base_dir).expanduser()
    paths = []

    main_db = base / ADDRESS_BOOK_FILENAME
    if main_db.exists():
        paths.append(main_db)

    sources_dir = base / "Sources"
    if sources_dir.is_dir():
        for account_dir in sorted(sources_dir.iterdir()):
            db = account_dir / ADDRESS_BOOK_FILENAME
            if db.exists():
                paths.append(db)

    if not paths:
        logger.warning(f"No AddressBook databases found under {base}")

    return paths


def get_address_book_sources(base_dir: Optional[Path | str] = None) -> list[AddressBookSource]:
    """AddressBookSource for every database under base_dir (defaults to settings)."""
    if base_dir is None:
        from config.settings import settings
        base_dir = settings.address_book_dir
    return [AddressBookSource(path) for path in discover_address_book_databases(base_dir)]
