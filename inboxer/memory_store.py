"""In-memory mail storage."""

from __future__ import annotations

import itertools
import json
import threading
import time
from datetime import datetime, timezone

from .models import InboxError, Mail, MailFilter, MailNotFoundError, MailStore


class SimpleIDGenerator:
    """Generates unique mail IDs from the clock and a counter."""

    def __init__(self) -> None:
        self._counter = itertools.count(1)
        self._lock = threading.Lock()

    def generate_id(self) -> str:
        with self._lock:
            number = next(self._counter)
        return f"mail_{time.time_ns()}_{number}"


def _sort_key(mail: Mail) -> float:
    return mail.create_time.timestamp() if mail.create_time is not None else float("-inf")


def _newest_first(mails: list[Mail]) -> list[Mail]:
    return sorted(mails, key=_sort_key, reverse=True)


def _paginate(mails: list[Mail], page: int, size: int) -> tuple[list[Mail], int]:
    if page <= 0:
        page = 1
    if size <= 0:
        size = 10
    start = (page - 1) * size
    return mails[start : start + size], len(mails)


def match_mail(mail: Mail, mail_filter: MailFilter | None, now: datetime) -> bool:
    """Return whether the mail satisfies every condition of the filter."""
    if mail_filter is None:
        return True
    if mail_filter.sender_id and mail.sender_id != mail_filter.sender_id:
        return False
    if mail_filter.recipient_id and mail.recipient_id != mail_filter.recipient_id:
        return False
    if mail_filter.read_status is not None and mail.read_status != mail_filter.read_status:
        return False
    if mail_filter.start_time is not None and (
        mail.create_time is None or mail.create_time < mail_filter.start_time
    ):
        return False
    if (
        mail_filter.end_time is not None
        and mail.create_time is not None
        and mail.create_time > mail_filter.end_time
    ):
        return False
    if mail_filter.expired_only and (mail.expire_time is None or not mail.expire_time < now):
        return False
    if mail_filter.tags:
        mail_tags = set(mail.tags or ())
        if not any(tag in mail_tags for tag in mail_filter.tags):
            return False
    return True


class MemoryMailStore(MailStore):
    """Keeps mails in a dictionary; every read and write works on copies."""

    def __init__(self, id_generator: SimpleIDGenerator | None = None) -> None:
        self._mails: dict[str, Mail] = {}
        self._id_generator = id_generator or SimpleIDGenerator()
        self._lock = threading.RLock()

    def create_mail(self, mail: Mail) -> str:
        if mail is None:
            raise ValueError("mail cannot be None")
        with self._lock:
            if not mail.id:
                mail.id = self._id_generator.generate_id()
            self._mails[mail.id] = mail.copy()
            return mail.id

    def get_mail(self, mail_id: str) -> Mail:
        with self._lock:
            try:
                return self._mails[mail_id].copy()
            except KeyError:
                raise MailNotFoundError(mail_id) from None

    def update_mail(self, mail: Mail) -> None:
        if mail is None or not mail.id:
            raise ValueError("mail cannot be None and must have an ID")
        with self._lock:
            if mail.id not in self._mails:
                raise MailNotFoundError(mail.id)
            self._mails[mail.id] = mail.copy()

    def delete_mail(self, mail_id: str) -> None:
        with self._lock:
            if mail_id not in self._mails:
                raise MailNotFoundError(mail_id)
            del self._mails[mail_id]

    def create_batch_mails(self, mails: list[Mail | None]) -> list[str]:
        ids: list[str] = []
        with self._lock:
            for mail in mails or ():
                if mail is None:
                    continue
                if not mail.id:
                    mail.id = self._id_generator.generate_id()
                self._mails[mail.id] = mail.copy()
                ids.append(mail.id)
        return ids

    def delete_mails_by_recipient(self, recipient_id: str) -> None:
        if not recipient_id:
            raise ValueError("recipient_id cannot be empty")
        with self._lock:
            self._mails = {
                mail_id: mail
                for mail_id, mail in self._mails.items()
                if mail.recipient_id != recipient_id
            }

    def delete_expired_mails(self, before: datetime) -> int:
        with self._lock:
            expired = [
                mail_id
                for mail_id, mail in self._mails.items()
                if mail.expire_time is not None and mail.expire_time < before
            ]
            for mail_id in expired:
                del self._mails[mail_id]
            return len(expired)

    def get_mails_by_recipient(
        self, recipient_id: str, page: int = 1, size: int = 10
    ) -> tuple[list[Mail], int]:
        with self._lock:
            matched = [m.copy() for m in self._mails.values() if m.recipient_id == recipient_id]
        return _paginate(_newest_first(matched), page, size)

    def _matching(self, mail_filter: MailFilter | None) -> list[Mail]:
        now = datetime.now(timezone.utc)
        with self._lock:
            matched = [m.copy() for m in self._mails.values() if match_mail(m, mail_filter, now)]
        return _newest_first(matched)

    def query_mails(
        self, mail_filter: MailFilter | None = None, page: int = 1, size: int = 10
    ) -> tuple[list[Mail], int]:
        return _paginate(self._matching(mail_filter), page, size)

    def count_unread_mails(self, recipient_id: str) -> int:
        with self._lock:
            return sum(
                1
                for m in self._mails.values()
                if m.recipient_id == recipient_id and not m.read_status
            )

    def count_mails_with_attachments(self, recipient_id: str) -> int:
        with self._lock:
            return sum(
                1 for m in self._mails.values() if m.recipient_id == recipient_id and m.attachments
            )

    def export_mail_logs(self, mail_filter: MailFilter | None = None) -> str:
        records = [mail.to_dict() for mail in self._matching(mail_filter)]
        try:
            return json.dumps(records, indent=2)
        except (TypeError, ValueError) as exc:
            raise InboxError(f"error marshaling mails to JSON: {exc}") from exc