"""Tests for the IMAP mail source."""

import imaplib
from datetime import date, datetime, timezone
from email.message import EmailMessage

import pytest
from conftest import SAMPLE_SUBJECT

from cashflow_automator.config import MailConfig
from cashflow_automator.mail import (
    ImapMailSource,
    MailError,
    build_search_criteria,
    imap_date,
    parse_message,
)


def raw_mail(subject=SAMPLE_SUBJECT, pdfs=("cierre.pdf",), date_header=None) -> bytes:
    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = "pos@example.com"
    msg["To"] = "caja@example.com"
    if date_header:
        msg["Date"] = date_header
    msg.set_content("Adjuntamos el reporte de cierre.")
    for name in pdfs:
        msg.add_attachment(
            b"%PDF-1.4 " + name.encode(), maintype="application", subtype="pdf", filename=name
        )
    msg.add_attachment(b"x", maintype="image", subtype="png", filename="logo.png")
    return msg.as_bytes()


class FakeImap:
    """Minimal IMAP4 connection with canned responses."""

    def __init__(self, host, port, messages=None, fail_login=False):
        self.host = host
        self.port = port
        self.messages = messages or {}
        self.fail_login = fail_login
        self.commands = []
        self.logged_out = False

    def login(self, user, password):
        if self.fail_login:
            raise imaplib.IMAP4.error("authentication failed")
        self.commands.append(("login", user))

    def select(self, mailbox, readonly=False):
        self.commands.append(("select", mailbox, readonly))
        return "OK", [b"2"]

    def uid(self, command, *args):
        self.commands.append(("uid", command) + args)
        if command == "search":
            return "OK", [b" ".join(self.messages)]
        meta, raw = self.messages[args[0].encode()]
        return "OK", [(meta, raw), b")"]

    def close(self):
        pass

    def logout(self):
        self.logged_out = True


@pytest.fixture
def mail_config():
    return MailConfig(host="imap.example.com", username="caja", password="secret")


class TestSearchCriteria:
    def test_imap_date(self):
        assert imap_date(date(2025, 7, 5)) == "05-Jul-2025"

    def test_before_is_day_after_end(self):
        criteria = build_search_criteria("Reporte", date(2025, 7, 1), date(2025, 7, 31))
        assert criteria == '(SUBJECT "Reporte" SINCE 01-Jul-2025 BEFORE 01-Aug-2025)'

    def test_quotes_escaped(self):
        criteria = build_search_criteria('a "b"', date(2025, 1, 1), date(2025, 1, 1))
        assert 'SUBJECT "a \\"b\\""' in criteria


class TestParseMessage:
    def test_attachments_and_subject(self):
        received = datetime(2025, 7, 15, 17, 31, 2, tzinfo=timezone.utc)
        message = parse_message("7", raw_mail(pdfs=("a.pdf", "b.pdf")), received)

        assert message.uid == "7"
        assert message.subject == SAMPLE_SUBJECT
        assert message.received_at == received
        assert [a.filename for a in message.pdf_attachments()] == ["a.pdf", "b.pdf"]
        assert len(message.attachments) == 3
        assert message.pdf_attachments()[0].data == b"%PDF-1.4 a.pdf"

    def test_folded_subject_is_unfolded_without_padding(self):
        subject = SAMPLE_SUBJECT + " - reenviado desde la sucursal principal de Palermo"
        message = parse_message("3", raw_mail(subject=subject), datetime.now(timezone.utc))
        assert message.subject == subject

    def test_date_header_fallback(self):
        raw = raw_mail(date_header="Tue, 15 Jul 2025 17:31:02 +0000")
        message = parse_message("1", raw)
        assert message.received_at == datetime(2025, 7, 15, 17, 31, 2, tzinfo=timezone.utc)

    def test_no_date_at_all(self):
        with pytest.raises(MailError):
            parse_message("1", raw_mail())


class TestImapMailSource:
    def make_source(self, config, **kwargs):
        connections = []

        def factory(host, port):
            conn = FakeImap(host, port, **kwargs)
            connections.append(conn)
            return conn

        return ImapMailSource(config, imap_factory=factory), connections

    def test_disabled_source(self):
        source = ImapMailSource(MailConfig())
        with pytest.raises(MailError):
            source.search(date(2025, 7, 1), date(2025, 7, 1))

    def test_login_failure(self, mail_config):
        source, _ = self.make_source(mail_config, fail_login=True)
        with pytest.raises(MailError):
            source.connect()

    def test_search_fetches_and_sorts(self, mail_config):
        messages = {
            b"11": (
                b'11 (UID 11 INTERNALDATE "16-Jul-2025 09:00:00 +0000" RFC822 {10}',
                raw_mail(subject="second"),
            ),
            b"10": (
                b'10 (UID 10 INTERNALDATE "15-Jul-2025 17:31:02 +0000" RFC822 {10}',
                raw_mail(subject="first"),
            ),
        }
        source, connections = self.make_source(mail_config, messages=messages)

        with source:
            found = source.search(date(2025, 7, 15), date(2025, 7, 16))

        assert [m.subject for m in found] == ["first", "second"]
        assert found[0].received_at == datetime(2025, 7, 15, 17, 31, 2, tzinfo=timezone.utc)

        conn = connections[0]
        assert ("select", "INBOX", True) in conn.commands
        search = [c for c in conn.commands if c[:2] == ("uid", "search")][0]
        assert "BEFORE 17-Jul-2025" in search[3]
        assert conn.logged_out is True

    def test_connects_once(self, mail_config):
        source, connections = self.make_source(mail_config)
        source.search(date(2025, 7, 15), date(2025, 7, 15))
        source.search(date(2025, 7, 16), date(2025, 7, 16))
        assert len(connections) == 1
