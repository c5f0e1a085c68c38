"""
Concrete evidence sources: iMessage history, Clay notes and Gmail.

Each source turns its native records into EvidenceRecords and runs them through
a fresh EvidenceCollector; merging across sources happens in IdentityResolver.
"""
import logging
from typing import Iterable, Optional

from api.services.clay import ClayClient
from api.services.contact_index import ContactIndex
from api.services.evidence import EvidenceCollector, EvidenceMatch, EvidenceRecord, EvidenceSource
from api.services.gmail import GmailService, build_gmail_query
from api.services.handle_utils import normalize_email
from api.services.imessage import IMessageDatabase, MessageRecord

logger = logging.getLogger(__name__)


def _message_records(messages: Iterable[MessageRecord]) -> Iterable[EvidenceRecord]:
    for msg in messages:
        if not msg.resolved_text or not msg.counterpart:
            continue
        yield EvidenceRecord(
            text=msg.resolved_text,
            timestamp=msg.timestamp,
            is_outbound=msg.is_from_me,
            handles=[msg.counterpart],
        )


class IMessageEvidenceSource(EvidenceSource):
    """
    Evidence from the local Messages database.

    Outbound messages that mention the term credit their recipient (or the
    group chat); inbound self-references credit their sender.
    """

    name = "imessage"

    def __init__(
        self,
        db: IMessageDatabase,
        contact_index: Optional[ContactIndex] = None,
        scan_limit: int = 5000,
        max_examples: int = 5,
        snippet_length: int = 200,
    ):
        self.db = db
        self.contact_index = contact_index
        self.scan_limit = scan_limit
        self.max_examples = max_examples
        self.snippet_length = snippet_length

    def _collect(self, term: str) -> list[EvidenceMatch]:
        collector = EvidenceCollector(
            term,
            self.name,
            max_examples=self.max_examples,
            snippet_length=self.snippet_length,
            name_lookup=self.contact_index.get_name if self.contact_index else None,
        )

        sent = self.db.recent_messages(self.scan_limit, direction="sent")
        collector.add_mentions(_message_records(sent))

        received = self.db.recent_messages(self.scan_limit, direction="received")
        collector.add_self_references(_message_records(received))

        return collector.results()


class ClayNotesEvidenceSource(EvidenceSource):
    """
    Evidence from Clay CRM notes.

    Notes (and the contact's own display name) are things you wrote about the
    contact, so they go through the mention pass attributed to the contact's
    phones and emails.
    """

    name = "clay"

    def __init__(
        self,
        client: ClayClient,
        search_limit: int = 10,
        max_examples: int = 5,
        snippet_length: int = 200,
        fetch_details: bool = True,
    ):
        self.client = client
        self.search_limit = search_limit
        self.max_examples = max_examples
        self.snippet_length = snippet_length
        self.fetch_details = fetch_details

    def _collect(self, term: str) -> list[EvidenceMatch]:
        collector = EvidenceCollector(
            term,
            self.name,
            max_examples=self.max_examples,
            snippet_length=self.snippet_length,
        )

        records = []
        for contact in self.client.search_contacts(term, limit=self.search_limit):
            # Search hits don't always carry notes
            if self.fetch_details and not contact.notes and contact.contact_id:
                contact = self.client.get_contact(contact.contact_id) or contact

            if not contact.handles:
                logger.debug(f"Skipping Clay contact {contact.contact_id} with no handles")
                continue

            if contact.name:
                records.append(EvidenceRecord(
                    text=contact.name,
                    timestamp=None,
                    is_outbound=True,
                    handles=list(contact.handles),
                    contact_name=contact.name,
                    label="name",
                    single_entity=True,
                ))
            for note in contact.notes:
                records.append(EvidenceRecord(
                    text=note,
                    timestamp=None,
                    is_outbound=True,
                    handles=list(contact.handles),
                    contact_name=contact.name or None,
                    label="note",
                    single_entity=True,
                ))

        collector.add_mentions(records)
        return collector.results()


class GmailEvidenceSource(EvidenceSource):
    """
    Evidence from Gmail.

    Sent mail mentioning the term credits every To/Cc recipient except you;
    received mail signed or introduced with the term credits its sender.
    """

    name = "gmail"

    def __init__(
        self,
        service: GmailService,
        scan_limit: int = 100,
        user_email: Optional[str] = None,
        max_examples: int = 5,
        snippet_length: int = 200,
    ):
        self.service = service
        self.scan_limit = scan_limit
        self.user_email = user_email
        self.max_examples = max_examples
        self.snippet_length = snippet_length

    def _own_address(self) -> str:
        return normalize_email(self.user_email or self.service.get_user_email())

    def _collect(self, term: str) -> list[EvidenceMatch]:
        collector = EvidenceCollector(
            term,
            self.name,
            max_examples=self.max_examples,
            snippet_length=self.snippet_length,
        )
        me = self._own_address()

        sent = self.service.search(
            build_gmail_query(phrase=term, sent=True),
            max_results=self.scan_limit,
            include_body=True,
        )
        collector.add_mentions(
            EvidenceRecord(
                text=email.text,
                timestamp=email.date,
                is_outbound=True,
                handles=[r for r in email.recipients if normalize_email(r) != me],
                label="sent",
            )
            for email in sent
        )

        received = self.service.search(
            build_gmail_query(phrase=term, sent=False),
            max_results=self.scan_limit,
            include_body=True,
        )
        collector.add_self_references(
            EvidenceRecord(
                text=email.text,
                timestamp=email.date,
                is_outbound=False,
                handles=[email.sender],
                contact_name=email.sender_name if email.sender_name != email.sender else None,
                label="received",
            )
            for email in received
            if normalize_email(email.sender) != me
        )

        return collector.results()


def get_evidence_sources() -> list[EvidenceSource]:
    """
    Evidence sources enabled by settings, in merge order.

    iMessage is always included; Clay needs an API key and Gmail needs a token.
    """
    from api.services.clay import get_clay_client
    from api.services.contact_index import get_contact_index
    from api.services.gmail import get_gmail_service
    from api.services.imessage import get_imessage_db
    from config.settings import settings

    sources: list[EvidenceSource] = [
        IMessageEvidenceSource(
            get_imessage_db(),
            get_contact_index(),
            scan_limit=settings.evidence_scan_limit,
            max_examples=settings.evidence_max_examples,
            snippet_length=settings.snippet_length,
        )
    ]

    if settings.clay_enabled:
        sources.append(ClayNotesEvidenceSource(
            get_clay_client(),
            max_examples=settings.evidence_max_examples,
            snippet_length=settings.snippet_length,
        ))

    if settings.gmail_enabled:
        sources.append(GmailEvidenceSource(
            get_gmail_service(),
            scan_limit=settings.gmail_scan_limit,
            user_email=settings.gmail_user_email or None,
            max_examples=settings.evidence_max_examples,
            snippet_length=settings.snippet_length,
        ))

    return sources
