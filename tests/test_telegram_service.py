import asyncio
import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, Mock

import httpx
import pytest

from tgbridge.config import settings
from tgbridge.services import telegram_service
from tgbridge.services.telegram_service import (
    HttpBotClient,
    SdkBotClient,
    TelegramApiError,
    best_effort_call,
    build_force_reply,
    build_reply_buttons,
    get_bot_client,
)

TOKEN = "123456:ABCDEF"


def _http_client(handler) -> HttpBotClient:
    return HttpBotClient(TOKEN, api_base_url="https://tg.test", timeout=5, transport=httpx.MockTransport(handler))


class TestHttpBotClient:
    def test_send_message_posts_json(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["json"] = json.loads(request.content)
            return httpx.Response(200, json={"ok": True, "result": {"message_id": 77}})

        message_id = asyncio.run(_http_client(handler).send_message(555, "Доброго дня"))

        assert message_id == 77
        assert seen["url"] == f"https://tg.test/bot{TOKEN}/sendMessage"
        assert seen["json"] == {"chat_id": 555, "text": "Доброго дня"}

    def test_send_message_with_markup(self):
        seen = {}

        def handler(request):
            seen["json"] = json.loads(request.content)
            return httpx.Response(200, json={"ok": True, "result": {"message_id": 1}})

        markup = build_force_reply()
        asyncio.run(_http_client(handler).send_message(1, "x", reply_markup=markup, parse_mode="HTML"))

        assert seen["json"]["reply_markup"] == markup
        assert seen["json"]["parse_mode"] == "HTML"

    def test_api_error_uses_description(self):
        def handler(request):
            return httpx.Response(400, json={"ok": False, "description": "Bad Request: chat not found"})

        with pytest.raises(TelegramApiError) as exc_info:
            asyncio.run(_http_client(handler).send_message(1, "x"))

        assert exc_info.value.message == "Bad Request: chat not found"
        assert exc_info.value.status_code == 400

    def test_api_error_without_json(self):
        def handler(request):
            return httpx.Response(502, text="bad gateway")

        with pytest.raises(TelegramApiError) as exc_info:
            asyncio.run(_http_client(handler).send_message(1, "x"))

        assert exc_info.value.message == "Telegram API HTTP 502: bad gateway"

    def test_network_error_wrapped(self):
        def handler(request):
            raise httpx.ConnectError("connection refused")

        with pytest.raises(TelegramApiError, match="request failed"):
            asyncio.run(_http_client(handler).send_message(1, "x"))

    def test_send_document_by_file_id(self):
        seen = {}

        def handler(request):
            seen["json"] = json.loads(request.content)
            return httpx.Response(200, json={"ok": True, "result": {"message_id": 9}})

        asyncio.run(_http_client(handler).send_document(1, "BQAD-file", caption="Акт"))

        assert seen["json"] == {"chat_id": 1, "document": "BQAD-file", "caption": "Акт"}

    def test_send_document_bytes_is_multipart(self):
        seen = {}

        def handler(request):
            seen["content_type"] = request.headers["content-type"]
            seen["body"] = request.content
            return httpx.Response(200, json={"ok": True, "result": {"message_id": 9}})

        asyncio.run(_http_client(handler).send_document(1, b"%PDF", file_name="akt.pdf", mime="application/pdf"))

        assert seen["content_type"].startswith("multipart/form-data")
        assert b'filename="akt.pdf"' in seen["body"]

    def test_send_voice_returns_file_handle(self):
        def handler(request):
            return httpx.Response(
                200,
                json={
                    "ok": True,
                    "result": {"message_id": 31, "voice": {"file_id": "voice-id", "file_unique_id": "vu"}},
                },
            )

        sent = asyncio.run(_http_client(handler).send_voice(1, b"OggS", duration=3))

        assert sent.message_id == 31
        assert sent.file_id == "voice-id"
        assert sent.file_unique_id == "vu"

    def test_get_file_and_download(self):
        def handler(request):
            if request.url.path.endswith("/getFile"):
                return httpx.Response(200, json={"ok": True, "result": {"file_path": "documents/file_1.pdf"}})
            assert request.url.path == f"/file/bot{TOKEN}/documents/file_1.pdf"
            return httpx.Response(200, content=b"%PDF-1.4")

        client = _http_client(handler)
        path = asyncio.run(client.get_file("doc-id"))
        content = asyncio.run(client.download_file(path))

        assert path == "documents/file_1.pdf"
        assert content == b"%PDF-1.4"

    def test_get_file_without_path(self):
        def handler(request):
            return httpx.Response(200, json={"ok": True, "result": {"file_id": "x"}})

        with pytest.raises(TelegramApiError):
            asyncio.run(_http_client(handler).get_file("x"))

    def test_download_file_error(self):
        def handler(request):
            return httpx.Response(404, text="Not Found")

        with pytest.raises(TelegramApiError) as exc_info:
            asyncio.run(_http_client(handler).download_file("documents/gone.pdf"))

        assert exc_info.value.status_code == 404


class TestSdkBotClient:
    def _sdk(self, handler) -> SdkBotClient:
        return SdkBotClient(TOKEN, _http_client(handler))

    def test_markup_goes_through_http(self):
        calls = []

        def handler(request):
            calls.append(request.url.path)
            return httpx.Response(200, json={"ok": True, "result": {"message_id": 3}})

        client = self._sdk(handler)
        message_id = asyncio.run(client.send_message(1, "x", reply_markup=build_reply_buttons("abc")))

        assert message_id == 3
        assert calls == [f"/bot{TOKEN}/sendMessage"]

    def test_copy_and_callback_go_through_http(self):
        calls = []

        def handler(request):
            calls.append(request.url.path.rsplit("/", 1)[-1])
            return httpx.Response(200, json={"ok": True, "result": {"message_id": 4} if "copy" in request.url.path else True})

        client = self._sdk(handler)
        asyncio.run(client.copy_message(-100, 1, 2))
        asyncio.run(client.answer_callback_query("cb", text="Немає доступу."))

        assert calls == ["copyMessage", "answerCallbackQuery"]

    def test_get_file_strips_download_prefix(self):
        client = self._sdk(lambda request: httpx.Response(500))
        base_file_url = f"https://tg.test/file/bot{TOKEN}"
        client._bot = Mock(
            base_file_url=base_file_url,
            get_file=AsyncMock(return_value=SimpleNamespace(file_path=f"{base_file_url}/documents/file_5.pdf")),
        )

        assert asyncio.run(client.get_file("doc")) == "documents/file_5.pdf"

    def test_plain_text_uses_sdk(self):
        client = self._sdk(lambda request: httpx.Response(500))
        client._bot = Mock(send_message=AsyncMock(return_value=SimpleNamespace(message_id=12)))

        assert asyncio.run(client.send_message(1, "plain")) == 12
        client._bot.send_message.assert_awaited_once_with(chat_id=1, text="plain")


class TestBotClientCache:
    def test_returns_cached_client(self):
        first = get_bot_client(TOKEN)
        second = get_bot_client(f"  {TOKEN}  ")
        assert first is second

    def test_empty_token_rejected(self):
        with pytest.raises(ValueError):
            get_bot_client("   ")

    def test_auto_mode_prefers_sdk(self, monkeypatch):
        monkeypatch.setattr(settings, "telegram_transport", "auto")
        assert isinstance(get_bot_client(TOKEN), SdkBotClient)

    def test_http_mode(self, monkeypatch):
        monkeypatch.setattr(settings, "telegram_transport", "HTTP")
        assert isinstance(get_bot_client(TOKEN), HttpBotClient)

    def test_transport_mode_is_part_of_key(self, monkeypatch):
        monkeypatch.setattr(settings, "telegram_transport", "http")
        http_client = get_bot_client(TOKEN)
        monkeypatch.setattr(settings, "telegram_transport", "sdk")
        assert get_bot_client(TOKEN) is not http_client

    def test_sdk_failure_falls_back_to_http(self, monkeypatch):
        monkeypatch.setattr(settings, "telegram_transport", "auto")
        monkeypatch.setattr(telegram_service, "SdkBotClient", Mock(side_effect=RuntimeError("no sdk")))
        assert isinstance(get_bot_client(TOKEN), HttpBotClient)

    def test_expired_entry_is_rebuilt(self, monkeypatch):
        monkeypatch.setattr(settings, "telegram_client_ttl_seconds", 0)
        first = get_bot_client(TOKEN)
        assert get_bot_client(TOKEN) is not first

    def test_expired_entries_swept_when_full(self, monkeypatch):
        monkeypatch.setattr(settings, "telegram_client_cache_max_size", 1)
        monkeypatch.setattr(settings, "telegram_client_ttl_seconds", 0)
        get_bot_client("111:old")
        monkeypatch.setattr(settings, "telegram_client_ttl_seconds", 600)
        get_bot_client("222:new")

        keys = list(telegram_service._client_cache)
        assert len(keys) == 1
        assert keys[0].endswith(":222:new")

    def test_expired_client_is_closed_when_rebuilt(self, monkeypatch):
        monkeypatch.setattr(settings, "telegram_transport", "http")
        monkeypatch.setattr(settings, "telegram_client_ttl_seconds", 0)
        first = get_bot_client(TOKEN)
        first.aclose = AsyncMock()

        get_bot_client(TOKEN)

        first.aclose.assert_awaited_once()

    def test_swept_clients_closed_on_running_loop(self, monkeypatch):
        monkeypatch.setattr(settings, "telegram_transport", "http")
        monkeypatch.setattr(settings, "telegram_client_cache_max_size", 1)
        monkeypatch.setattr(settings, "telegram_client_ttl_seconds", 0)

        async def scenario():
            old = get_bot_client("111:old")
            old.aclose = AsyncMock()
            monkeypatch.setattr(settings, "telegram_client_ttl_seconds", 600)
            get_bot_client("222:new")
            await asyncio.sleep(0)
            return old

        old = asyncio.run(scenario())

        old.aclose.assert_awaited_once()
        assert list(telegram_service._client_cache)[0].endswith(":222:new")

    def test_sdk_client_closes_its_pools(self):
        client = SdkBotClient(TOKEN, _http_client(lambda request: httpx.Response(500)))
        client._requests = (Mock(shutdown=AsyncMock()), Mock(shutdown=AsyncMock()))

        asyncio.run(client.aclose())

        for request in client._requests:
            request.shutdown.assert_awaited_once()

    def test_close_bot_clients_empties_cache(self, monkeypatch):
        monkeypatch.setattr(settings, "telegram_transport", "http")
        get_bot_client(TOKEN)
        asyncio.run(telegram_service.close_bot_clients())
        assert telegram_service._client_cache == {}


class TestKeyboards:
    def test_reply_buttons_with_app_url(self):
        markup = build_reply_buttons("conv-1", "https://app.example.com/")
        [row] = markup["inline_keyboard"]
        assert row[0] == {"text": "Відповісти", "callback_data": "reply:conv-1"}
        assert row[1] == {"text": "Відкрити", "url": "https://app.example.com/inbox?id=conv-1"}

    def test_reply_buttons_without_app_url(self):
        [row] = build_reply_buttons("conv-1", "")["inline_keyboard"]
        assert len(row) == 1

    def test_force_reply(self):
        assert build_force_reply() == {"force_reply": True, "selective": True}


class TestBestEffortCall:
    def test_success(self):
        async def ok():
            return 1

        assert asyncio.run(best_effort_call("archive", ok())) is True

    def test_failure_is_swallowed(self):
        async def boom():
            raise TelegramApiError("Forbidden: bot was blocked by the user", 403)

        assert asyncio.run(best_effort_call("notify_staff", boom(), {"conversation_id": "c"})) is False

    def test_timeout(self, monkeypatch):
        monkeypatch.setattr(settings, "telegram_best_effort_timeout_seconds", 0.01)

        async def slow():
            await asyncio.sleep(1)

        assert asyncio.run(best_effort_call("archive", slow())) is False
