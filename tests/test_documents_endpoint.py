from unittest.mock import AsyncMock, patch
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from tgbridge.database import get_db
from tgbridge.main import app
from tgbridge.models import Conversation, Document, Message, MessageAttachment, TelegramContact
from tgbridge.services.storage_service import StorageError


@pytest.fixture
def client(db, fake_bot):
    app.dependency_overrides[get_db] = lambda: db
    yield TestClient(app, follow_redirects=False)
    app.dependency_overrides.clear()


@pytest.fixture
def headers(tenant):
    return {"X-Tenant-Id": str(tenant.tenant_id), "X-Profile-Id": str(uuid4()), "X-Profile-Role": "accountant"}


@pytest.fixture
def make_attachment(db, tenant):
    contact = TelegramContact(tenant_id=tenant.tenant_id, bot_id=tenant.bot_id, telegram_user_id=1, chat_id=1)
    db.add(contact)
    db.flush()
    conversation = Conversation(tenant_id=tenant.tenant_id, bot_id=tenant.bot_id, telegram_contact_id=contact.id)
    db.add(conversation)
    db.flush()
    message = Message(
        tenant_id=tenant.tenant_id,
        conversation_id=conversation.id,
        direction="inbound",
        source="telegram",
        status="received",
    )
    db.add(message)
    db.commit()

    def _make_attachment(storage_path: str, file_id="BQAD-1") -> MessageAttachment:
        attachment = MessageAttachment(
            tenant_id=tenant.tenant_id,
            message_id=message.id,
            telegram_file_id=file_id,
            storage_path=storage_path,
            file_name="Акт звірки.pdf",
            mime="application/pdf",
        )
        db.add(attachment)
        db.commit()
        return attachment

    return _make_attachment


class TestDownloadDocument:
    def test_other_tenant_path(self, client, headers):
        response = client.get("/documents/download", params={"path": f"{uuid4()}/tg/x.pdf"}, headers=headers)
        assert response.status_code == 403

    def test_unknown_path(self, client, tenant, headers):
        response = client.get("/documents/download", params={"path": f"{tenant.tenant_id}/tg/x.pdf"}, headers=headers)
        assert response.status_code == 404

    def test_streams_telegram_file(self, client, tenant, fake_bot, headers, make_attachment):
        path = f"{tenant.tenant_id}/tg/abc_akt.pdf"
        make_attachment(path)

        response = client.get("/documents/download", params={"path": path}, headers=headers)

        assert response.status_code == 200
        assert response.content == b"%PDF-1.4 test"
        assert response.headers["content-type"] == "application/pdf"
        assert 'filename="_.pdf"' in response.headers["content-disposition"]
        assert fake_bot.calls_for("get_file") == [{"file_id": "BQAD-1"}]
        assert fake_bot.calls_for("download_file") == [{"file_path": "documents/BQAD-1.bin"}]

    def test_document_path_uses_origin_attachment(self, client, db, tenant, fake_bot, headers, make_attachment, make_client):
        origin = make_attachment(f"{tenant.tenant_id}/tg/origin.pdf", file_id="BQAD-origin")
        document = Document(
            tenant_id=tenant.tenant_id,
            client_id=make_client().id,
            origin_attachment_id=origin.id,
            storage_path=f"{tenant.tenant_id}/tg/doc.pdf",
            file_name="akt.pdf",
        )
        db.add(document)
        db.commit()

        response = client.get("/documents/download", params={"path": document.storage_path}, headers=headers)

        assert response.status_code == 200
        assert fake_bot.calls_for("get_file") == [{"file_id": "BQAD-origin"}]

    def test_pending_without_file_id_is_gone(self, client, tenant, headers, make_attachment):
        path = f"{tenant.tenant_id}/pending/123_akt.pdf"
        make_attachment(path, file_id=None)

        response = client.get("/documents/download", params={"path": path}, headers=headers)

        assert response.status_code == 410

    def test_telegram_error_is_gone(self, client, tenant, fake_bot, headers, make_attachment):
        path = f"{tenant.tenant_id}/tg/abc_akt.pdf"
        make_attachment(path)
        fake_bot.fail_on = {"get_file"}

        response = client.get("/documents/download", params={"path": path}, headers=headers)

        assert response.status_code == 410

    def test_uploaded_document_redirects(self, client, db, tenant, headers, make_client):
        path = f"{tenant.tenant_id}/documents/akt.pdf"
        db.add(Document(tenant_id=tenant.tenant_id, client_id=make_client().id, storage_path=path, file_name="akt.pdf"))
        db.commit()

        with patch(
            "tgbridge.routers.documents.create_signed_url",
            new_callable=AsyncMock,
            return_value="https://storage.example.com/signed/akt.pdf",
        ):
            response = client.get("/documents/download", params={"path": path}, headers=headers)

        assert response.status_code == 307
        assert response.headers["location"] == "https://storage.example.com/signed/akt.pdf"

    def test_signing_failure(self, client, db, tenant, headers, make_client):
        path = f"{tenant.tenant_id}/documents/akt.pdf"
        db.add(Document(tenant_id=tenant.tenant_id, client_id=make_client().id, storage_path=path, file_name="akt.pdf"))
        db.commit()

        with patch(
            "tgbridge.routers.documents.create_signed_url",
            new_callable=AsyncMock,
            side_effect=StorageError("Storage signing is not configured"),
        ):
            response = client.get("/documents/download", params={"path": path}, headers=headers)

        assert response.status_code == 502
