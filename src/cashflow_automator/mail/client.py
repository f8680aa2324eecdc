"""
IMAP inbox source for closure report mails.

Messages are searched by subject and received date, then fetched whole.
Each message exposes its subject, its immutable received timestamp (the
server's INTERNALDATE) and its attachments as bytes.
"""

import email
import imaplib
import logging
import time
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from email import policy
from email.utils import parsedate_to_datetime
from typing import Any, Callable, Optional, Protocol

from ..config import MailConfig

logger = logging.getLogger(__name__)

# IMAP dates use English month names whatever the locale
_MONTHS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")


class MailError(Exception):
    """Connection, login, search or fetch against the inbox failed."""

    pass


@dataclass
class MailAttachment:
    filename: str
    content_type: str
    data: bytes

    @property
    def is_pdf(self) -> bool:
        return self.content_type == "application/pdf" or self.filename.lower().endswith(".pdf")


@dataclass
class MailMessage:
    """One inbox message."""

    uid: str
    subject: str
    received_at: datetime
    attachments: list[MailAttachment] = field(default_factory=list)

    def pdf_attachments(self) -> list[MailAttachment]:
        return [a for a in self.attachments if a.is_pdf]


class MailSource(Protocol):
    """Anything that can list closure mails for a date range."""

    def search(self, date_from: date, date_to: date) -> list[MailMessage]: ...


def imap_date(day: date) -> str:
    """IMAP search date, e.g. 05-Jul-2025."""
    return f"{day.day:02d}-{_MONTHS[day.month - 1]}-{day.year}"


def build_search_criteria(subject: str, date_from: date, date_to: date) -> str:
    """SUBJECT plus SINCE/BEFORE; BEFORE is exclusive so it is end + 1 day."""
    escaped = subject.replace("\\", "\\\\").replace('"', '\\"')
    return (
        f'(SUBJECT "{escaped}" SINCE {imap_date(date_from)} '
        f"BEFORE {imap_date(date_to + timedelta(days=1))})"
    )


def parse_message(uid: str, raw: bytes, internal_date: Optional[datetime] = None) -> MailMessage:
    """Build a MailMessage from RFC822 bytes."""
    msg = email.message_from_bytes(raw, policy=policy.default)
    subject = str(msg.get("Subject", "") or "").strip()

    received_at = internal_date
    if received_at is None:
        header = msg.get("Date")
        if not header:
            raise MailError(f"Message {uid} has neither INTERNALDATE nor Date header")
        received_at = parsedate_to_datetime(str(header))

    attachments = []
    for part in msg.walk():
        if part.is_multipart():
            continue
        filename = part.get_filename()
        if not filename:
            continue
        payload = part.get_payload(decode=True) or b""
        attachments.append(MailAttachment(filename, part.get_content_type(), payload))

    return MailMessage(uid=uid, subject=subject, received_at=received_at, attachments=attachments)


def _internal_date(meta: bytes) -> Optional[datetime]:
    parsed = imaplib.Internaldate2tuple(meta)
    if parsed is None:
        return None
    return datetime.fromtimestamp(time.mktime(parsed), tz=timezone.utc)


class ImapMailSource:
    """
    Closure mails from an IMAP mailbox.

    Usage:
        with ImapMailSource(config.mail) as source:
            messages = source.search(date(2025, 7, 1), date(2025, 7, 31))
    """

    def __init__(
        self,
        config: MailConfig,
        imap_factory: Optional[Callable[[str, int], Any]] = None,
    ):
        self.config = config
        self._imap_factory = imap_factory or imaplib.IMAP4_SSL
        self._conn: Any = None

    def __enter__(self) -> "ImapMailSource":
        self.connect()
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def connect(self) -> None:
        if self._conn is not None:
            return
        if not self.config.enabled:
            raise MailError("Mail source is not configured (mail.host / mail.username)")
        try:
            conn = self._imap_factory(self.config.host, self.config.port)
            conn.login(self.config.username, self.config.password)
            typ, _ = conn.select(self.config.mailbox, readonly=True)
        except (imaplib.IMAP4.error, OSError) as e:
            raise MailError(f"Could not connect to {self.config.host}: {e}") from e
        if typ != "OK":
            raise MailError(f"Could not select mailbox {self.config.mailbox}")
        self._conn = conn
        logger.info(f"Connected to {self.config.host} ({self.config.mailbox})")

    def close(self) -> None:
        if self._conn is None:
            return
        conn, self._conn = self._conn, None
        try:
            conn.close()
            conn.logout()
        except (imaplib.IMAP4.error, OSError) as e:
            logger.debug(f"Error closing IMAP connection: {e}")

    def search(self, date_from: date, date_to: date) -> list[MailMessage]:
        """
        Messages whose subject contains the configured text, received
        between date_from and date_to (both inclusive), oldest first.

        Raises:
            MailError: On any IMAP failure
        """
        self.connect()
        criteria = build_search_criteria(self.config.search_subject, date_from, date_to)
        try:
            typ, data = self._conn.uid("search", None, criteria)
            if typ != "OK":
                raise MailError(f"Search failed: {criteria}")
            uids = data[0].split() if data and data[0] else []
            messages = [self._fetch(uid.decode()) for uid in uids]
        except (imaplib.IMAP4.error, OSError) as e:
            raise MailError(f"Search failed: {e}") from e

        logger.info(f"Found {len(messages)} messages between {date_from} and {date_to}")
        return sorted(messages, key=lambda m: m.received_at)

    def _fetch(self, uid: str) -> MailMessage:
        typ, data = self._conn.uid("fetch", uid, "(INTERNALDATE RFC822)")
        if typ != "OK" or not data:
            raise MailError(f"Fetch failed for message {uid}")
        for item in data:
            if isinstance(item, tuple) and len(item) == 2:
                meta, raw = item
                return parse_message(uid, raw, _internal_date(meta))
        raise MailError(f"Message {uid} returned no body")
