"""Mail storage backed by an SQLite database."""

from __future__ import annotations

import json
import sqlite3
import threading
import time
from dataclasses import astuple, dataclass
from datetime import datetime, timezone
from typing import Any

from .models import InboxError, Mail, MailFilter, MailNotFoundError, MailStore

_COLUMNS = (
    "id",
    "sender_id",
    "recipient_id",
    "title",
    "content",
    "attachments",
    "read_status",
    "create_time",
    "expire_time",
    "tags",
    "created_at",
    "updated_at",
)
_SELECT_COLUMNS = ", ".join(_COLUMNS)
_EXPORT_LIMIT = 10000

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS mails (
        id TEXT PRIMARY KEY,
        sender_id TEXT NOT NULL DEFAULT '',
        recipient_id TEXT NOT NULL DEFAULT '',
        title TEXT NOT NULL DEFAULT '',
        content TEXT NOT NULL DEFAULT '',
        attachments TEXT NOT NULL DEFAULT '',
        read_status INTEGER NOT NULL DEFAULT 0,
        create_time TEXT,
        expire_time TEXT,
        tags TEXT NOT NULL DEFAULT '',
        created_at TEXT,
        updated_at TEXT
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_mails_sender_id ON mails (sender_id)",
    "CREATE INDEX IF NOT EXISTS idx_mails_recipient_id ON mails (recipient_id)",
    "CREATE INDEX IF NOT EXISTS idx_mails_read_status ON mails (read_status)",
    "CREATE INDEX IF NOT EXISTS idx_mails_create_time ON mails (create_time)",
    "CREATE INDEX IF NOT EXISTS idx_mails_expire_time ON mails (expire_time)",
)


@dataclass
class MailRecord:
    """A mail as stored in the ``mails`` table, with JSON-encoded containers."""

    id: str = ""
    sender_id: str = ""
    recipient_id: str = ""
    title: str = ""
    content: str = ""
    attachments: str = ""
    read_status: bool = False
    create_time: datetime | None = None
    expire_time: datetime | None = None
    tags: str = ""
    created_at: datetime | None = None
    updated_at: datetime | None = None


def _time_to_db(value: datetime | None) -> str | None:
    """Encode a time as text that sorts in chronological order."""
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.isoformat(sep=" ", timespec="microseconds")


def _time_from_db(text: str | None) -> datetime | None:
    if text is None or text == "":
        return None
    return datetime.fromisoformat(text)


def mail_to_record(mail: Mail) -> MailRecord:
    """Convert a mail into its database form, encoding attachments and tags as JSON."""
    if mail.attachments is not None:
        try:
            attachments = json.dumps(mail.attachments, separators=(",", ":"))
        except (TypeError, ValueError) as exc:
            raise InboxError(f"failed to marshal attachments: {exc}") from exc
    else:
        attachments = "{}"

    if mail.tags is not None:
        try:
            tags = json.dumps(mail.tags, separators=(",", ":"))
        except (TypeError, ValueError) as exc:
            raise InboxError(f"failed to marshal tags: {exc}") from exc
    else:
        tags = "[]"

    return MailRecord(
        id=mail.id,
        sender_id=mail.sender_id,
        recipient_id=mail.recipient_id,
        title=mail.title,
        content=mail.content,
        attachments=attachments,
        read_status=mail.read_status,
        create_time=mail.create_time,
        expire_time=mail.expire_time,
        tags=tags,
    )


def record_to_mail(record: MailRecord) -> Mail:
    """Convert a database record back into a mail, decoding its JSON fields."""
    mail = Mail(
        id=record.id,
        sender_id=record.sender_id,
        recipient_id=record.recipient_id,
        title=record.title,
        content=record.content,
        read_status=bool(record.read_status),
        create_time=record.create_time,
        expire_time=record.expire_time,
    )

    if record.attachments:
        try:
            attachments = json.loads(record.attachments)
        except ValueError as exc:
            raise InboxError(f"failed to unmarshal attachments: {exc}") from exc
        if attachments is not None and not isinstance(attachments, dict):
            raise InboxError("failed to unmarshal attachments: not a JSON object")
        mail.attachments = attachments

    if record.tags:
        try:
            tags = json.loads(record.tags)
        except ValueError as exc:
            raise InboxError(f"failed to unmarshal tags: {exc}") from exc
        if tags is not None and not (
            isinstance(tags, list) and all(isinstance(tag, str) for tag in tags)
        ):
            raise InboxError("failed to unmarshal tags: not a JSON array of strings")
        mail.tags = tags

    return mail


def _record_params(record: MailRecord) -> tuple[Any, ...]:
    values = list(astuple(record))
    for name in ("create_time", "expire_time", "created_at", "updated_at"):
        index = _COLUMNS.index(name)
        values[index] = _time_to_db(values[index])
    values[_COLUMNS.index("read_status")] = int(bool(record.read_status))
    return tuple(values)


def _row_to_record(row: tuple[Any, ...]) -> MailRecord:
    data = dict(zip(_COLUMNS, row))
    return MailRecord(
        id=data["id"],
        sender_id=data["sender_id"] or "",
        recipient_id=data["recipient_id"] or "",
        title=data["title"] or "",
        content=data["content"] or "",
        attachments=data["attachments"] or "",
        read_status=bool(data["read_status"]),
        create_time=_time_from_db(data["create_time"]),
        expire_time=_time_from_db(data["expire_time"]),
        tags=data["tags"] or "",
        created_at=_time_from_db(data["created_at"]),
        updated_at=_time_from_db(data["updated_at"]),
    )


def _normalize_page(page: int, size: int) -> tuple[int, int]:
    return (page if page > 0 else 1), (size if size > 0 else 10)


def _filter_clause(mail_filter: MailFilter | None) -> tuple[str, list[Any]]:
    conditions: list[str] = []
    params: list[Any] = []
    if mail_filter is not None:
        if mail_filter.sender_id:
            conditions.append("sender_id = ?")
            params.append(mail_filter.sender_id)
        if mail_filter.recipient_id:
            conditions.append("recipient_id = ?")
            params.append(mail_filter.recipient_id)
        if mail_filter.read_status is not None:
            conditions.append("read_status = ?")
            params.append(int(mail_filter.read_status))
        if mail_filter.start_time is not None:
            conditions.append("create_time >= ?")
            params.append(_time_to_db(mail_filter.start_time))
        if mail_filter.end_time is not None:
            conditions.append("(create_time IS NULL OR create_time <= ?)")
            params.append(_time_to_db(mail_filter.end_time))
        if mail_filter.expired_only:
            conditions.append("expire_time IS NOT NULL AND expire_time < ?")
            params.append(_time_to_db(datetime.now(timezone.utc)))
        for tag in mail_filter.tags or ():
            conditions.append("tags LIKE ?")
            params.append(f"%{tag}%")
    where = f" WHERE {' AND '.join(conditions)}" if conditions else ""
    return where, params


class SqliteMailStore(MailStore):
    """Stores mails in the ``mails`` table of an SQLite database.

    ``database`` is either an open :class:`sqlite3.Connection` or a path
    (``":memory:"`` for a private in-memory database). The table and its
    indexes are created if missing.
    """

    def __init__(self, database: sqlite3.Connection | str) -> None:
        if database is None:
            raise ValueError("database connection cannot be None")
        if isinstance(database, sqlite3.Connection):
            self._conn = database
        else:
            self._conn = sqlite3.connect(database, check_same_thread=False)
        self._lock = threading.RLock()
        try:
            with self._lock, self._conn:
                for statement in _SCHEMA:
                    self._conn.execute(statement)
        except sqlite3.Error as exc:
            raise InboxError(f"failed to migrate database schema: {exc}") from exc

    def _insert(self, records: list[MailRecord]) -> None:
        placeholders = ", ".join("?" for _ in _COLUMNS)
        self._conn.executemany(
            f"INSERT INTO mails ({_SELECT_COLUMNS}) VALUES ({placeholders})",
            [_record_params(record) for record in records],
        )

    def _stamp(self, record: MailRecord) -> MailRecord:
        now = datetime.now(timezone.utc)
        record.created_at = now
        record.updated_at = now
        return record

    def create_mail(self, mail: Mail) -> str:
        if mail is None:
            raise ValueError("mail cannot be None")
        if not mail.id:
            mail.id = f"mail_{time.time_ns()}"
        record = self._stamp(mail_to_record(mail))
        try:
            with self._lock, self._conn:
                self._insert([record])
        except sqlite3.Error as exc:
            raise InboxError(f"failed to create mail: {exc}") from exc
        return mail.id

    def get_mail(self, mail_id: str) -> Mail:
        if not mail_id:
            raise ValueError("mail ID cannot be empty")
        try:
            with self._lock:
                row = self._conn.execute(
                    f"SELECT {_SELECT_COLUMNS} FROM mails WHERE id = ? LIMIT 1", (mail_id,)
                ).fetchone()
        except sqlite3.Error as exc:
            raise InboxError(f"failed to get mail: {exc}") from exc
        if row is None:
            raise MailNotFoundError(mail_id)
        return record_to_mail(_row_to_record(row))

    def update_mail(self, mail: Mail) -> None:
        if mail is None or not mail.id:
            raise ValueError("mail cannot be None and must have an ID")
        record = mail_to_record(mail)
        record.updated_at = datetime.now(timezone.utc)
        params = _record_params(record)
        updated = [c for c in _COLUMNS if c not in ("id", "created_at")]
        assignments = ", ".join(f"{column} = ?" for column in updated)
        values = [params[_COLUMNS.index(column)] for column in updated]
        with self._lock:
            try:
                (count,) = self._conn.execute(
                    "SELECT COUNT(*) FROM mails WHERE id = ?", (mail.id,)
                ).fetchone()
            except sqlite3.Error as exc:
                raise InboxError(f"failed to check mail existence: {exc}") from exc
            if count == 0:
                raise MailNotFoundError(mail.id)
            try:
                with self._conn:
                    self._conn.execute(
                        f"UPDATE mails SET {assignments} WHERE id = ?", (*values, mail.id)
                    )
            except sqlite3.Error as exc:
                raise InboxError(f"failed to update mail: {exc}") from exc

    def delete_mail(self, mail_id: str) -> None:
        if not mail_id:
            raise ValueError("mail ID cannot be empty")
        try:
            with self._lock, self._conn:
                cursor = self._conn.execute("DELETE FROM mails WHERE id = ?", (mail_id,))
        except sqlite3.Error as exc:
            raise InboxError(f"failed to delete mail: {exc}") from exc
        if cursor.rowcount == 0:
            raise MailNotFoundError(mail_id)

    def create_batch_mails(self, mails: list[Mail | None]) -> list[str]:
        if not mails:
            return []
        ids: list[str] = []
        records: list[MailRecord] = []
        for mail in mails:
            if mail is None:
                continue
            if not mail.id:
                mail.id = f"mail_{time.time_ns()}_{len(ids)}"
            records.append(self._stamp(mail_to_record(mail)))
            ids.append(mail.id)
        if records:
            try:
                with self._lock, self._conn:
                    self._insert(records)
            except sqlite3.Error as exc:
                raise InboxError(f"failed to create batch mails: {exc}") from exc
        return ids

    def delete_mails_by_recipient(self, recipient_id: str) -> None:
        if not recipient_id:
            raise ValueError("recipient_id cannot be empty")
        try:
            with self._lock, self._conn:
                self._conn.execute("DELETE FROM mails WHERE recipient_id = ?", (recipient_id,))
        except sqlite3.Error as exc:
            raise InboxError(f"failed to delete mails by recipient: {exc}") from exc

    def delete_expired_mails(self, before: datetime) -> int:
        try:
            with self._lock, self._conn:
                cursor = self._conn.execute(
                    "DELETE FROM mails WHERE expire_time IS NOT NULL AND expire_time < ?",
                    (_time_to_db(before),),
                )
        except sqlite3.Error as exc:
            raise InboxError(f"failed to delete expired mails: {exc}") from exc
        return cursor.rowcount

    def _page(self, where: str, params: list[Any], page: int, size: int) -> tuple[list[Mail], int]:
        page, size = _normalize_page(page, size)
        with self._lock:
            try:
                (total,) = self._conn.execute(
                    f"SELECT COUNT(*) FROM mails{where}", params
                ).fetchone()
            except sqlite3.Error as exc:
                raise InboxError(f"failed to count mails: {exc}") from exc
            if total == 0:
                return [], 0
            try:
                rows = self._conn.execute(
                    f"SELECT {_SELECT_COLUMNS} FROM mails{where} "
                    "ORDER BY create_time DESC LIMIT ? OFFSET ?",
                    [*params, size, (page - 1) * size],
                ).fetchall()
            except sqlite3.Error as exc:
                raise InboxError(f"failed to query mails: {exc}") from exc
        return [record_to_mail(_row_to_record(row)) for row in rows], total

    def get_mails_by_recipient(
        self, recipient_id: str, page: int = 1, size: int = 10
    ) -> tuple[list[Mail], int]:
        if not recipient_id:
            raise ValueError("recipient_id cannot be empty")
        return self._page(" WHERE recipient_id = ?", [recipient_id], page, size)

    def query_mails(
        self, mail_filter: MailFilter | None = None, page: int = 1, size: int = 10
    ) -> tuple[list[Mail], int]:
        where, params = _filter_clause(mail_filter)
        return self._page(where, params, page, size)

    def count_unread_mails(self, recipient_id: str) -> int:
        if not recipient_id:
            raise ValueError("recipient_id cannot be empty")
        try:
            with self._lock:
                (count,) = self._conn.execute(
                    "SELECT COUNT(*) FROM mails WHERE recipient_id = ? AND read_status = 0",
                    (recipient_id,),
                ).fetchone()
        except sqlite3.Error as exc:
            raise InboxError(f"failed to count unread mails: {exc}") from exc
        return count

    def count_mails_with_attachments(self, recipient_id: str) -> int:
        if not recipient_id:
            raise ValueError("recipient_id cannot be empty")
        try:
            with self._lock:
                (count,) = self._conn.execute(
                    "SELECT COUNT(*) FROM mails WHERE recipient_id = ? "
                    "AND attachments != '' AND attachments != '[]' AND attachments != '{}'",
                    (recipient_id,),
                ).fetchone()
        except sqlite3.Error as exc:
            raise InboxError(f"failed to count mails with attachments: {exc}") from exc
        return count

    def export_mail_logs(self, mail_filter: MailFilter | None = None) -> str:
        mails, _ = self.query_mails(mail_filter, 1, _EXPORT_LIMIT)
        try:
            return json.dumps([mail.to_dict() for mail in mails], indent=2)
        except (TypeError, ValueError) as exc:
            raise InboxError(f"failed to marshal mails to JSON: {exc}") from exc