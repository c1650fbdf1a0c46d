# inboxer

A small library for managing in-game system mail: sending single or batch
mails, system announcements, paginated inbox queries, read tracking,
unread and attachment counts, expiry cleanup and JSON log export.

It has no dependencies beyond the Python standard library (3.10 or later).

## Modules

- `inboxer.models`: the `Mail` and `MailFilter` dataclasses, the abstract
  `MailStore` interface, and the errors `InboxError` and `MailNotFoundError`.
- `inboxer.memory_store`: `MemoryMailStore`, a thread-safe in-process store
  that hands out copies of its mails, plus `SimpleIDGenerator` and the
  `match_mail(mail, mail_filter, now)` helper.
- `inboxer.sql_store`: `SqliteMailStore`, which keeps mails in a `mails`
  table of an SQLite database (created with its indexes if missing), plus
  `MailRecord`, `mail_to_record` and `record_to_mail`.
- `inboxer.manager`: `MailManager`, the high-level API over any `MailStore`.

## Installation

```
pip install .
```

## Usage

```python
from datetime import datetime, timedelta, timezone

from inboxer.manager import MailManager
from inboxer.memory_store import MemoryMailStore
from inboxer.models import Mail, MailFilter

manager = MailManager(MemoryMailStore())

mail_id = manager.send_mail(Mail(
    sender_id="system",
    recipient_id="user1",
    title="Welcome",
    content="Here is a starter gift.",
    attachments={"coins": 100},
    expire_time=datetime.now(timezone.utc) + timedelta(days=7),
))

ids = manager.send_batch_mail(
    Mail(sender_id="system", title="Event", content="The event starts today."),
    ["user1", "user2", "user3"],
)

mails, total = manager.get_mails_by_recipient("user1", 1, 10)  # newest first
manager.mark_as_read(mail_id)
manager.mark_all_as_read("user1")
print(manager.count_unread_mails("user1"))
print(manager.count_mails_with_attachments("user1"))

important, total = manager.query_mails(MailFilter(tags=["important"]), 1, 20)
print(manager.export_mail_logs(MailFilter(sender_id="system")))
```

Sending a mail fills in defaults: `create_time` becomes the current UTC time
if unset, `tags` and `attachments` become empty containers if `None`, and
`read_status` is reset to `False`. A mail without an ID is given one by the
store.

`send_system_announcement(mail)` stores a single mail with sender `"system"`,
recipient `"all_players"` and the tag `"system_announcement"` added.

Pages start at 1; a page or size of zero or less falls back to page 1 and
size 10. Results are ordered by creation time, newest first.

Use timezone-aware datetimes for `create_time`, `expire_time` and filter
times: expiry checks compare against the current UTC time.

### SQLite storage

```python
from inboxer.manager import MailManager
from inboxer.sql_store import SqliteMailStore

manager = MailManager(SqliteMailStore("mails.db"))   # or ":memory:", or an open sqlite3.Connection
```

Attachments and tags are stored as JSON text, so attachment values must be
JSON-serialisable and come back as JSON types.

The two stores differ in a few details:

- Tag filters: `MemoryMailStore` matches a mail having any of the filter's
  tags exactly; `SqliteMailStore` requires every filter tag to appear as a
  substring of the stored tag text.
- `SqliteMailStore.export_mail_logs` exports at most 10,000 mails.
- `SqliteMailStore` rejects empty IDs with `ValueError` in more methods
  (`get_mail`, `delete_mail`, the count methods, `get_mails_by_recipient`).

### Expiry cleanup

Mails whose expiry time has passed can be removed on demand with
`manager.delete_expired_mails()`, which returns how many were deleted, or
periodically in a background thread:

```python
manager.schedule_cleanup(timedelta(minutes=5))   # or a number of seconds
...
manager.stop_cleanup()
```

Scheduling again replaces the running cleanup. `MailManager` is also a
context manager that stops the cleanup on exit. Results and errors of the
background cleanup are reported through the `inboxer.manager` logger.

### Errors

Invalid arguments (a `None` mail, an empty ID, a non-positive cleanup
interval) raise `ValueError`. A missing mail raises `MailNotFoundError`, a
subclass of both `InboxError` and `LookupError`. Storage and JSON encoding
failures raise `InboxError`.

## What it does not do

- There is no command-line program or server; this is a library only.
- System announcements are not delivered to individual players: there is no
  player registry, so an announcement is one mail for `"all_players"`.

## Running the tests

```
pip install .[test]
pytest
```