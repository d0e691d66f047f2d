import os

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

import uuid
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from typing import Optional
from unittest.mock import Mock

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from tgbridge import database
from tgbridge.config import settings
from tgbridge.database import Base
from tgbridge.models import Client, ClientAccountant, Profile, TenantBot
from tgbridge.services import staff_reply_state, telegram_service
from tgbridge.services.telegram_service import SentVoice, TelegramApiError


class FakeBotClient:
    """Records every Telegram call; methods listed in ``fail_on`` raise TelegramApiError."""

    def __init__(self):
        self.calls: list[tuple[str, dict]] = []
        self.fail_on: set[str] = set()
        self._next_message_id = 5000

    def _record(self, method: str, **kwargs) -> int:
        if method in self.fail_on:
            raise TelegramApiError(f"{method} failed", 500)
        self.calls.append((method, kwargs))
        self._next_message_id += 1
        return self._next_message_id

    def calls_for(self, method: str) -> list[dict]:
        return [kwargs for name, kwargs in self.calls if name == method]

    async def send_message(self, chat_id, text, reply_markup=None, parse_mode=None):
        return self._record("send_message", chat_id=chat_id, text=text, reply_markup=reply_markup)

    async def send_document(self, chat_id, document, file_name=None, caption=None, mime=None):
        return self._record("send_document", chat_id=chat_id, document=document, file_name=file_name, caption=caption)

    async def send_voice(self, chat_id, voice, file_name="voice.ogg", mime="audio/ogg", duration=None, caption=None):
        message_id = self._record("send_voice", chat_id=chat_id, size=len(voice), duration=duration)
        return SentVoice(message_id=message_id, file_id=f"voice-file-{message_id}", file_unique_id="uniq")

    async def copy_message(self, chat_id, from_chat_id, message_id):
        return self._record("copy_message", chat_id=chat_id, from_chat_id=from_chat_id, message_id=message_id)

    async def get_file(self, file_id):
        self._record("get_file", file_id=file_id)
        return f"documents/{file_id}.bin"

    async def download_file(self, file_path):
        self._record("download_file", file_path=file_path)
        return b"%PDF-1.4 test"

    async def answer_callback_query(self, callback_query_id, text=None):
        self._record("answer_callback_query", callback_query_id=callback_query_id, text=text)

    async def aclose(self):
        return None


@pytest.fixture
def db_session():
    """Mock database session."""
    return Mock()


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine, monkeypatch):
    factory = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    monkeypatch.setattr(database, "SessionLocal", factory)
    return factory


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(autouse=True)
def isolated_state(monkeypatch):
    monkeypatch.setattr(settings, "redis_url", None)
    monkeypatch.setattr(settings, "queue_mode", "inline")
    monkeypatch.setattr(settings, "telegram_archive_chat_id", None)
    monkeypatch.setattr(settings, "app_url", "https://app.example.com")
    staff_reply_state.reset_active_replies()
    telegram_service._client_cache.clear()
    yield
    staff_reply_state.reset_active_replies()
    telegram_service._client_cache.clear()


@pytest.fixture
def fake_bot(monkeypatch):
    bot = FakeBotClient()
    monkeypatch.setattr("tgbridge.services.bot_service.get_bot_client", lambda token: bot)
    return bot


@pytest.fixture
def tenant(db):
    tenant_id = uuid.uuid4()
    bot = TenantBot(
        tenant_id=tenant_id,
        bot_username="acme_office_bot",
        display_name="Acme Office",
        token_encrypted="123456:ABCDEF",
        webhook_secret="webhook-secret",
        is_active=True,
    )
    db.add(bot)
    db.commit()
    return SimpleNamespace(tenant_id=tenant_id, bot_id=bot.id, public_id=bot.public_id, bot=bot)


@pytest.fixture
def make_staff(db, tenant):
    def _make_staff(
        full_name: str = "Шевченко Тарас Григорович",
        chat_id: Optional[int] = None,
        link_code: Optional[str] = None,
        code_ttl: timedelta = timedelta(minutes=15),
        tenant_id: Optional[uuid.UUID] = None,
        role: str = "accountant",
    ) -> Profile:
        profile = Profile(
            tenant_id=tenant_id or tenant.tenant_id,
            full_name=full_name,
            role=role,
            telegram_chat_id=chat_id,
            telegram_link_code=link_code,
            telegram_link_code_expires_at=datetime.now(timezone.utc) + code_ttl if link_code else None,
        )
        db.add(profile)
        db.commit()
        return profile

    return _make_staff


@pytest.fixture
def make_client(db, tenant):
    def _make_client(name: str = "ТОВ Ромашка", accountant: Optional[Profile] = None, primary: bool = True) -> Client:
        client = Client(tenant_id=tenant.tenant_id, name=name)
        db.add(client)
        db.flush()
        if accountant is not None:
            db.add(
                ClientAccountant(
                    tenant_id=tenant.tenant_id,
                    client_id=client.id,
                    accountant_id=accountant.id,
                    is_primary=primary,
                )
            )
        db.commit()
        return client

    return _make_client


@pytest.fixture
def make_update():
    counter = {"update_id": 100, "message_id": 10}

    def _make_update(
        text: Optional[str] = None,
        chat_id: int = 777001,
        first_name: str = "Олена",
        last_name: Optional[str] = "Коваль",
        username: Optional[str] = "olena_k",
        update_id: Optional[int] = None,
        **message_fields,
    ) -> dict:
        counter["update_id"] += 1
        counter["message_id"] += 1
        message = {
            "message_id": counter["message_id"],
            "date": 1700000000,
            "chat": {"id": chat_id, "type": "private"},
            "from": {"id": chat_id, "is_bot": False, "first_name": first_name},
        }
        if last_name:
            message["from"]["last_name"] = last_name
        if username:
            message["from"]["username"] = username
        if text is not None:
            message["text"] = text
        message.update(message_fields)
        return {"update_id": update_id or counter["update_id"], "message": message}

    return _make_update


@pytest.fixture
def make_callback():
    def _make_callback(data: str, chat_id: int, callback_id: str = "cb-1", update_id: int = 900) -> dict:
        return {
            "update_id": update_id,
            "callback_query": {
                "id": callback_id,
                "from": {"id": chat_id, "is_bot": False, "first_name": "Staff"},
                "message": {
                    "message_id": 55,
                    "date": 1700000000,
                    "chat": {"id": chat_id, "type": "private"},
                },
                "data": data,
            },
        }

    return _make_callback
