from datetime import datetime, timedelta, timezone

import pytest

from inboxer.models import InboxError, Mail, MailFilter, MailNotFoundError, MailStore


def _sample_mail():
    now = datetime.now(timezone.utc)
    return Mail(
        id="mail-1",
        sender_id="system",
        recipient_id="user1",
        title="Test Mail",
        content="This is a test mail",
        attachments={"coins": 100},
        create_time=now,
        expire_time=now + timedelta(hours=24),
        tags=["test", "notification"],
    )


def test_copy_equal_but_independent():
    mail = _sample_mail()
    clone = mail.copy()
    assert clone == mail
    clone.tags.append("extra")
    clone.attachments["item"] = "sword"
    assert mail.tags == ["test", "notification"]
    assert mail.attachments == {"coins": 100}


def test_copy_keeps_none_containers():
    mail = Mail(id="x")
    clone = mail.copy()
    assert clone.tags is None
    assert clone.attachments is None


def test_to_dict_fields():
    mail = _sample_mail()
    data = mail.to_dict()
    assert data["ID"] == "mail-1"
    assert data["SenderID"] == "system"
    assert data["RecipientID"] == "user1"
    assert data["Title"] == "Test Mail"
    assert data["Content"] == "This is a test mail"
    assert data["Attachments"] == {"coins": 100}
    assert data["ReadStatus"] is False
    assert data["Tags"] == ["test", "notification"]


def test_to_dict_unset_times_use_zero_time():
    data = Mail(id="x").to_dict()
    assert data["CreateTime"] == "0001-01-01T00:00:00Z"
    assert data["ExpireTime"] == data["CreateTime"]
    assert data["Tags"] is None
    assert data["Attachments"] is None


def test_to_dict_utc_time_uses_z_suffix():
    when = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
    data = Mail(id="x", create_time=when).to_dict()
    assert data["CreateTime"].endswith("Z")
    assert datetime.fromisoformat(data["CreateTime"][:-1] + "+00:00") == when


def test_mail_filter_defaults_match_everything():
    mail_filter = MailFilter()
    assert mail_filter.sender_id == ""
    assert mail_filter.read_status is None
    assert mail_filter.tags == []
    assert mail_filter.expired_only is False


def test_mail_not_found_error():
    error = MailNotFoundError("abc")
    assert isinstance(error, InboxError)
    assert isinstance(error, LookupError)
    assert error.mail_id == "abc"
    assert "abc" in str(error)


def test_mail_store_is_abstract():
    with pytest.raises(TypeError):
        MailStore()