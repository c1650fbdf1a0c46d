"""Core mail types, errors and the storage interface."""

from __future__ import annotations

import abc
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

_ZERO_TIME = "0001-01-01T00:00:00Z"


class InboxError(Exception):
    """Base class for errors raised by the mail system."""


class MailNotFoundError(InboxError, LookupError):
    """Raised when a mail with the requested ID does not exist."""

    def __init__(self, mail_id: str) -> None:
        super().__init__(f"mail with ID {mail_id} not found")
        self.mail_id = mail_id


def _format_time(value: datetime | None) -> str:
    if value is None:
        return _ZERO_TIME
    text = value.isoformat()
    if text.endswith("+00:00"):
        text = text[: -len("+00:00")] + "Z"
    return text


@dataclass
class Mail:
    """A system mail addressed to one recipient.

    ``create_time`` and ``expire_time`` are ``None`` when unset; a mail
    without an expiry time never expires.
    """

    id: str = ""
    sender_id: str = ""
    recipient_id: str = ""
    title: str = ""
    content: str = ""
    attachments: dict[str, Any] | None = None
    read_status: bool = False
    create_time: datetime | None = None
    expire_time: datetime | None = None
    tags: list[str] | None = None

    def copy(self) -> Mail:
        """Return a copy whose tags and attachments containers are independent."""
        return Mail(
            id=self.id,
            sender_id=self.sender_id,
            recipient_id=self.recipient_id,
            title=self.title,
            content=self.content,
            attachments=dict(self.attachments) if self.attachments is not None else None,
            read_status=self.read_status,
            create_time=self.create_time,
            expire_time=self.expire_time,
            tags=list(self.tags) if self.tags is not None else None,
        )

    def to_dict(self) -> dict[str, Any]:
        """Return the mail as a JSON-ready mapping, as used by log exports."""
        return {
            "ID": self.id,
            "SenderID": self.sender_id,
            "RecipientID": self.recipient_id,
            "Title": self.title,
            "Content": self.content,
            "Attachments": dict(self.attachments) if self.attachments is not None else None,
            "ReadStatus": self.read_status,
            "CreateTime": _format_time(self.create_time),
            "ExpireTime": _format_time(self.expire_time),
            "Tags": list(self.tags) if self.tags is not None else None,
        }


@dataclass
class MailFilter:
    """Conditions for selecting mails; empty or ``None`` fields match anything."""

    sender_id: str = ""
    recipient_id: str = ""
    read_status: bool | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    expired_only: bool = False
    tags: list[str] = field(default_factory=list)


class MailStore(abc.ABC):
    """Persistent storage for mails."""

    @abc.abstractmethod
    def create_mail(self, mail: Mail) -> str:
        """Store a new mail, assigning an ID if it has none, and return the ID."""

    @abc.abstractmethod
    def get_mail(self, mail_id: str) -> Mail:
        """Return the mail with the given ID."""

    @abc.abstractmethod
    def update_mail(self, mail: Mail) -> None:
        """Replace an existing mail."""

    @abc.abstractmethod
    def delete_mail(self, mail_id: str) -> None:
        """Delete the mail with the given ID."""

    @abc.abstractmethod
    def create_batch_mails(self, mails: list[Mail | None]) -> list[str]:
        """Store several mails, skipping ``None`` entries, and return their IDs."""

    @abc.abstractmethod
    def delete_mails_by_recipient(self, recipient_id: str) -> None:
        """Delete every mail addressed to the recipient."""

    @abc.abstractmethod
    def delete_expired_mails(self, before: datetime) -> int:
        """Delete mails that expired before the given time and return how many."""

    @abc.abstractmethod
    def get_mails_by_recipient(
        self, recipient_id: str, page: int = 1, size: int = 10
    ) -> tuple[list[Mail], int]:
        """Return one page of the recipient's mails, newest first, and the total."""

    @abc.abstractmethod
    def query_mails(
        self, mail_filter: MailFilter | None = None, page: int = 1, size: int = 10
    ) -> tuple[list[Mail], int]:
        """Return one page of matching mails, newest first, and the total."""

    @abc.abstractmethod
    def count_unread_mails(self, recipient_id: str) -> int:
        """Count the recipient's unread mails."""

    @abc.abstractmethod
    def count_mails_with_attachments(self, recipient_id: str) -> int:
        """Count the recipient's mails that carry at least one attachment."""

    @abc.abstractmethod
    def export_mail_logs(self, mail_filter: MailFilter | None = None) -> str:
        """Return the matching mails as an indented JSON array."""