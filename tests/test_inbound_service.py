import asyncio
from uuid import uuid4

import pytest

from tgbridge.config import settings
from tgbridge.models import Conversation, Message, MessageAttachment, Profile, TelegramContact
from tgbridge.services.bot_service import BotNotFoundError
from tgbridge.services.inbound_service import process_inbound_update
from tgbridge.services.staff_service import MSG_LINKED, MSG_PRESS_REPLY_FIRST

STAFF_CHAT_ID = 9001
CLIENT_CHAT_ID = 777001

PDF_DOCUMENT = {
    "file_id": "BQAD-akt",
    "file_unique_id": "uniq-akt",
    "file_name": "akt.pdf",
    "mime_type": "application/pdf",
    "file_size": 2048,
}


def _process(db, tenant, payload):
    return asyncio.run(process_inbound_update(db, tenant.tenant_id, tenant.bot_id, payload))


@pytest.fixture
def linked_client(db, tenant, make_staff, make_client):
    """Client contact whose primary accountant has a linked Telegram chat."""
    staff = make_staff(chat_id=STAFF_CHAT_ID)
    client = make_client(accountant=staff)
    contact = TelegramContact(
        tenant_id=tenant.tenant_id,
        bot_id=tenant.bot_id,
        client_id=client.id,
        telegram_user_id=CLIENT_CHAT_ID,
        chat_id=CLIENT_CHAT_ID,
    )
    db.add(contact)
    db.commit()
    return client


class TestClientMessages:
    def test_text_message_creates_history(self, db, tenant, fake_bot, make_update):
        result = _process(db, tenant, make_update("  Доброго дня  "))

        assert result.kind == "client_message"
        db.expire_all()
        contact = db.query(TelegramContact).one()
        assert contact.first_name == "Олена"
        assert contact.chat_id == CLIENT_CHAT_ID
        conversation = db.query(Conversation).one()
        assert conversation.id == result.conversation_id
        assert conversation.unread_count == 1
        assert conversation.last_message_at is not None
        message = db.query(Message).one()
        assert message.body == "Доброго дня"
        assert message.direction == "inbound"
        assert message.source == "telegram"
        assert message.status == "received"
        assert result.file_jobs == []

    def test_second_message_reuses_conversation(self, db, tenant, fake_bot, make_update):
        first = _process(db, tenant, make_update("Перше"))
        second = _process(db, tenant, make_update("Друге", first_name="Олена Петрівна", username="olena_new"))

        assert first.conversation_id == second.conversation_id
        db.expire_all()
        conversation = db.query(Conversation).one()
        assert conversation.unread_count == 2
        contact = db.query(TelegramContact).one()
        assert contact.first_name == "Олена Петрівна"
        assert contact.username == "olena_new"
        assert db.query(Message).count() == 2

    def test_document_creates_pending_attachment(self, db, tenant, fake_bot, linked_client, make_update):
        result = _process(db, tenant, make_update(caption="Акт", document=PDF_DOCUMENT))

        attachment = db.query(MessageAttachment).one()
        assert attachment.storage_path.startswith(f"{tenant.tenant_id}/pending/")
        assert attachment.telegram_file_id == "BQAD-akt"
        assert attachment.mime == "application/pdf"
        [job] = result.file_jobs
        assert job.attachment_id == attachment.id
        assert job.client_id == linked_client.id
        assert job.file_name == "akt.pdf"
        assert db.query(Message).one().body == "Акт"

    def test_notifies_primary_accountant(self, db, tenant, fake_bot, linked_client, make_update):
        result = _process(db, tenant, make_update("Доброго дня"))

        [sent] = fake_bot.calls_for("send_message")
        assert sent["chat_id"] == STAFF_CHAT_ID
        assert sent["text"] == "Нове повідомлення від Олена Коваль:\n\nДоброго дня"
        buttons = sent["reply_markup"]["inline_keyboard"][0]
        assert buttons[0]["callback_data"] == f"reply:{result.conversation_id}"

    def test_no_notification_without_staff(self, db, tenant, fake_bot, make_update):
        _process(db, tenant, make_update("Доброго дня"))
        assert fake_bot.calls_for("send_message") == []

    def test_attachment_is_archived(self, db, tenant, fake_bot, make_update, monkeypatch):
        monkeypatch.setattr(settings, "telegram_archive_chat_id", -100500)
        payload = make_update(document=PDF_DOCUMENT)

        _process(db, tenant, payload)

        [copy] = fake_bot.calls_for("copy_message")
        assert copy == {
            "chat_id": -100500,
            "from_chat_id": CLIENT_CHAT_ID,
            "message_id": payload["message"]["message_id"],
        }

    def test_text_is_not_archived(self, db, tenant, fake_bot, make_update, monkeypatch):
        monkeypatch.setattr(settings, "telegram_archive_chat_id", -100500)
        _process(db, tenant, make_update("Тільки текст"))
        assert fake_bot.calls_for("copy_message") == []

    def test_archive_and_notify_failures_do_not_fail(self, db, tenant, fake_bot, linked_client, make_update, monkeypatch):
        monkeypatch.setattr(settings, "telegram_archive_chat_id", -100500)
        fake_bot.fail_on = {"copy_message", "send_message"}

        result = _process(db, tenant, make_update(caption="Акт", document=PDF_DOCUMENT))

        assert result.kind == "client_message"
        assert db.query(Message).count() == 1
        assert len(result.file_jobs) == 1


class TestIgnoredUpdates:
    def test_group_chat_ignored(self, db, tenant, fake_bot, make_update):
        payload = make_update("hello all")
        payload["message"]["chat"]["type"] = "supergroup"

        result = _process(db, tenant, payload)

        assert result.kind == "ignored"
        assert db.query(Message).count() == 0

    def test_update_without_message(self, db, tenant, fake_bot):
        result = _process(db, tenant, {"update_id": 1, "my_chat_member": {}})
        assert result.kind == "ignored"

    def test_unknown_bot_raises(self, db, tenant, fake_bot, make_update):
        with pytest.raises(BotNotFoundError):
            asyncio.run(process_inbound_update(db, tenant.tenant_id, uuid4(), make_update("x")))


class TestStaffRouting:
    def test_link_command(self, db, tenant, fake_bot, make_staff, make_update):
        profile = make_staff(link_code="ABC234")

        result = _process(db, tenant, make_update("/start abc234", chat_id=STAFF_CHAT_ID))

        assert result.kind == "link"
        db.expire_all()
        linked = db.query(Profile).filter(Profile.id == profile.id).one()
        assert linked.telegram_chat_id == STAFF_CHAT_ID
        assert linked.telegram_link_code is None
        [sent] = fake_bot.calls_for("send_message")
        assert sent["chat_id"] == STAFF_CHAT_ID
        assert sent["text"] == MSG_LINKED.format(name="Шевченко Т.Г.")
        assert db.query(Conversation).count() == 0

    def test_linked_staff_message_is_not_client_history(self, db, tenant, fake_bot, make_staff, make_update):
        make_staff(chat_id=STAFF_CHAT_ID)

        result = _process(db, tenant, make_update("Привіт", chat_id=STAFF_CHAT_ID))

        assert result.kind == "staff_reply"
        assert result.message_id is None
        assert db.query(Message).count() == 0
        [sent] = fake_bot.calls_for("send_message")
        assert sent["text"] == MSG_PRESS_REPLY_FIRST

    def test_staff_of_other_tenant_is_a_client(self, db, tenant, fake_bot, make_staff, make_update):
        make_staff(chat_id=STAFF_CHAT_ID, tenant_id=uuid4())

        result = _process(db, tenant, make_update("Привіт", chat_id=STAFF_CHAT_ID))

        assert result.kind == "client_message"
