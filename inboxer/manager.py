"""High-level mail operations on top of a mail store."""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta, timezone

from .models import InboxError, Mail, MailFilter, MailStore

logger = logging.getLogger(__name__)

SYSTEM_SENDER_ID = "system"
ALL_PLAYERS_RECIPIENT_ID = "all_players"
ANNOUNCEMENT_TAG = "system_announcement"
_MARK_ALL_PAGE_SIZE = 100


def _prepare_for_sending(mail: Mail) -> None:
    """Fill in defaults that every outgoing mail needs."""
    if mail.create_time is None:
        mail.create_time = datetime.now(timezone.utc)
    if mail.tags is None:
        mail.tags = []
    if mail.attachments is None:
        mail.attachments = {}
    mail.read_status = False


def _require(value: str, what: str) -> None:
    if not value:
        raise ValueError(f"{what} cannot be empty")


class MailManager:
    """Sends, queries and maintains mails kept in a :class:`MailStore`.

    Can be used as a context manager; leaving it stops any scheduled cleanup.
    """

    def __init__(self, store: MailStore) -> None:
        self.store = store
        self._lock = threading.Lock()
        self._cleanup_stop: threading.Event | None = None
        self._cleanup_thread: threading.Thread | None = None

    def __enter__(self) -> MailManager:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop_cleanup()

    def send_mail(self, mail: Mail) -> str:
        """Store a single mail and return its ID."""
        if mail is None:
            raise ValueError("mail cannot be None")
        _prepare_for_sending(mail)
        return self.store.create_mail(mail)

    def send_batch_mail(self, mail: Mail, recipient_ids: list[str]) -> list[str]:
        """Send a copy of the mail to every non-empty recipient ID."""
        if mail is None:
            raise ValueError("mail cannot be None")
        if not recipient_ids:
            return []
        _prepare_for_sending(mail)
        mails: list[Mail | None] = [
            Mail(
                sender_id=mail.sender_id,
                recipient_id=recipient_id,
                title=mail.title,
                content=mail.content,
                attachments=dict(mail.attachments) if mail.attachments is not None else None,
                read_status=False,
                create_time=mail.create_time,
                expire_time=mail.expire_time,
                tags=list(mail.tags or ()),
            )
            for recipient_id in recipient_ids
            if recipient_id
        ]
        return self.store.create_batch_mails(mails)

    def send_system_announcement(self, mail: Mail) -> str:
        """Store the mail as an announcement from the system to all players."""
        if mail is None:
            raise ValueError("mail cannot be None")
        _prepare_for_sending(mail)
        mail.sender_id = SYSTEM_SENDER_ID
        mail.recipient_id = ALL_PLAYERS_RECIPIENT_ID
        if ANNOUNCEMENT_TAG not in mail.tags:
            mail.tags.append(ANNOUNCEMENT_TAG)
        return self.store.create_mail(mail)

    def get_mail_by_id(self, mail_id: str) -> Mail:
        _require(mail_id, "mail ID")
        return self.store.get_mail(mail_id)

    def get_mails_by_recipient(
        self, recipient_id: str, page: int = 1, size: int = 10
    ) -> tuple[list[Mail], int]:
        _require(recipient_id, "recipient ID")
        return self.store.get_mails_by_recipient(recipient_id, page, size)

    def query_mails(
        self, mail_filter: MailFilter | None = None, page: int = 1, size: int = 10
    ) -> tuple[list[Mail], int]:
        return self.store.query_mails(mail_filter or MailFilter(), page, size)

    def mark_as_read(self, mail_id: str) -> None:
        _require(mail_id, "mail ID")
        mail = self.store.get_mail(mail_id)
        if mail.read_status:
            return
        mail.read_status = True
        self.store.update_mail(mail)

    def mark_all_as_read(self, recipient_id: str) -> None:
        """Mark every mail of the recipient as read, page by page."""
        _require(recipient_id, "recipient ID")
        page = 1
        processed = 0
        while True:
            mails, total = self.store.get_mails_by_recipient(
                recipient_id, page, _MARK_ALL_PAGE_SIZE
            )
            if not mails:
                break
            for mail in mails:
                if not mail.read_status:
                    mail.read_status = True
                    self.store.update_mail(mail)
            processed += len(mails)
            if processed >= total:
                break
            page += 1

    def delete_mail(self, mail_id: str) -> None:
        _require(mail_id, "mail ID")
        self.store.delete_mail(mail_id)

    def delete_mails_by_recipient(self, recipient_id: str) -> None:
        _require(recipient_id, "recipient ID")
        self.store.delete_mails_by_recipient(recipient_id)

    def delete_expired_mails(self) -> int:
        """Delete mails whose expiry time has passed and return how many."""
        return self.store.delete_expired_mails(datetime.now(timezone.utc))

    def count_unread_mails(self, recipient_id: str) -> int:
        _require(recipient_id, "recipient ID")
        return self.store.count_unread_mails(recipient_id)

    def count_mails_with_attachments(self, recipient_id: str) -> int:
        _require(recipient_id, "recipient ID")
        return self.store.count_mails_with_attachments(recipient_id)

    def schedule_cleanup(self, interval: float | timedelta) -> None:
        """Delete expired mails every ``interval`` (seconds or timedelta) in the background.

        A previously scheduled cleanup is replaced.
        """
        seconds = interval.total_seconds() if isinstance(interval, timedelta) else float(interval)
        if seconds <= 0:
            raise ValueError("cleanup interval must be positive")
        with self._lock:
            self._stop_locked()
            stop = threading.Event()
            thread = threading.Thread(
                target=self._cleanup_loop, args=(stop, seconds), name="mail-cleanup", daemon=True
            )
            self._cleanup_stop = stop
            self._cleanup_thread = thread
            thread.start()

    def stop_cleanup(self) -> None:
        """Stop the scheduled cleanup, if any."""
        with self._lock:
            self._stop_locked()

    def _stop_locked(self) -> None:
        if self._cleanup_stop is not None:
            self._cleanup_stop.set()
        if self._cleanup_thread is not None and self._cleanup_thread is not threading.current_thread():
            self._cleanup_thread.join()
        self._cleanup_stop = None
        self._cleanup_thread = None

    def _cleanup_loop(self, stop: threading.Event, seconds: float) -> None:
        while not stop.wait(seconds):
            try:
                count = self.delete_expired_mails()
            except InboxError as exc:
                logger.error("Error during automatic mail cleanup: %s", exc)
                continue
            if count > 0:
                logger.info("Automatic cleanup removed %d expired mails", count)

    def export_mail_logs(self, mail_filter: MailFilter | None = None) -> str:
        return self.store.export_mail_logs(mail_filter or MailFilter())