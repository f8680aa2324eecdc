"""
Inbox access for closure report mails.
"""

from .client import (
    ImapMailSource,
    MailAttachment,
    MailError,
    MailMessage,
    MailSource,
    build_search_criteria,
    imap_date,
    parse_message,
)

__all__ = [
    "ImapMailSource",
    "MailSource",
    "MailMessage",
    "MailAttachment",
    "MailError",
    "build_search_criteria",
    "imap_date",
    "parse_message",
]
