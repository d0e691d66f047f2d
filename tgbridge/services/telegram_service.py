"""Telegram Bot API transport.

Two clients expose the same coroutine interface:

* ``SdkBotClient`` wraps python-telegram-bot and is preferred.
* ``HttpBotClient`` talks to the Bot API directly over httpx. The SDK client
  delegates to it for operations it cannot express (reply markup as plain
  dicts, voice uploads that must return the stored file handle, message copies,
  callback answers, raw file downloads).

``get_bot_client`` caches one client per (process start, transport mode, token).
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Optional, Union

import httpx
from telegram import Bot
from telegram.error import TelegramError
from telegram.request import HTTPXRequest

from tgbridge.config import settings
from tgbridge.logging_config import get_logger

logger = get_logger("telegram_service")

PROCESS_START = int(time.time() * 1000)


class TelegramApiError(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


@dataclass
class SentVoice:
    message_id: int
    file_id: Optional[str] = None
    file_unique_id: Optional[str] = None


class HttpBotClient:
    """Raw Bot API client over httpx."""

    transport_name = "http"

    def __init__(
        self,
        token: str,
        api_base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.token = token
        self.api_base_url = (api_base_url or settings.telegram_api_base_url).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.telegram_http_timeout_seconds
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    async def _call(
        self,
        method: str,
        payload: Optional[dict] = None,
        files: Optional[dict] = None,
    ) -> Any:
        url = f"{self.api_base_url}/bot{self.token}/{method}"
        try:
            async with self._client() as client:
                if files:
                    data = {key: str(value) for key, value in (payload or {}).items() if value is not None}
                    response = await client.post(url, data=data, files=files)
                else:
                    response = await client.post(url, json=payload or {})
        except httpx.HTTPError as exc:
            raise TelegramApiError(f"Telegram API request failed: {exc}") from exc

        try:
            body = response.json()
        except ValueError:
            body = None

        if response.status_code >= 400 or not isinstance(body, dict) or not body.get("ok"):
            description = body.get("description") if isinstance(body, dict) else None
            if description:
                raise TelegramApiError(description, response.status_code)
            raise TelegramApiError(
                f"Telegram API HTTP {response.status_code}: {response.text}",
                response.status_code,
            )
        return body.get("result")

    async def send_message(
        self,
        chat_id: int,
        text: str,
        reply_markup: Optional[dict] = None,
        parse_mode: Optional[str] = None,
    ) -> int:
        payload: dict[str, Any] = {"chat_id": chat_id, "text": text}
        if reply_markup:
            payload["reply_markup"] = reply_markup
        if parse_mode:
            payload["parse_mode"] = parse_mode
        result = await self._call("sendMessage", payload)
        return int(result["message_id"])

    async def send_document(
        self,
        chat_id: int,
        document: Union[str, bytes],
        file_name: Optional[str] = None,
        caption: Optional[str] = None,
        mime: Optional[str] = None,
    ) -> int:
        payload: dict[str, Any] = {"chat_id": chat_id}
        if caption:
            payload["caption"] = caption
        if isinstance(document, bytes):
            files = {"document": (file_name or "document", document, mime or "application/octet-stream")}
            result = await self._call("sendDocument", payload, files=files)
        else:
            payload["document"] = document
            result = await self._call("sendDocument", payload)
        return int(result["message_id"])

    async def send_voice(
        self,
        chat_id: int,
        voice: bytes,
        file_name: str = "voice.ogg",
        mime: str = "audio/ogg",
        duration: Optional[int] = None,
        caption: Optional[str] = None,
    ) -> SentVoice:
        payload: dict[str, Any] = {"chat_id": chat_id, "duration": duration, "caption": caption or None}
        result = await self._call("sendVoice", payload, files={"voice": (file_name, voice, mime)})
        stored = result.get("voice") or result.get("audio") or {}
        return SentVoice(
            message_id=int(result["message_id"]),
            file_id=stored.get("file_id"),
            file_unique_id=stored.get("file_unique_id"),
        )

    async def copy_message(self, chat_id: int, from_chat_id: int, message_id: int) -> int:
        result = await self._call(
            "copyMessage",
            {"chat_id": chat_id, "from_chat_id": from_chat_id, "message_id": message_id},
        )
        return int(result["message_id"])

    async def get_file(self, file_id: str) -> str:
        result = await self._call("getFile", {"file_id": file_id})
        file_path = (result or {}).get("file_path")
        if not file_path:
            raise TelegramApiError("Telegram getFile returned no file_path")
        return file_path

    async def download_file(self, file_path: str) -> bytes:
        url = f"{self.api_base_url}/file/bot{self.token}/{file_path.lstrip('/')}"
        try:
            async with self._client() as client:
                response = await client.get(url)
        except httpx.HTTPError as exc:
            raise TelegramApiError(f"Telegram file download failed: {exc}") from exc
        if response.status_code >= 400:
            raise TelegramApiError(
                f"Telegram API HTTP {response.status_code}: {response.text}",
                response.status_code,
            )
        return response.content

    async def answer_callback_query(self, callback_query_id: str, text: Optional[str] = None) -> None:
        payload: dict[str, Any] = {"callback_query_id": callback_query_id}
        if text:
            payload["text"] = text
        await self._call("answerCallbackQuery", payload)

    async def aclose(self) -> None:
        return None


class SdkBotClient:
    """python-telegram-bot backed client with per-operation HTTP fallback."""

    transport_name = "sdk"

    def __init__(self, token: str, http: HttpBotClient):
        timeout = http.timeout
        base = http.api_base_url
        self._http = http
        self._requests = (
            HTTPXRequest(connect_timeout=timeout, read_timeout=timeout, write_timeout=timeout),
            HTTPXRequest(connect_timeout=timeout, read_timeout=timeout, write_timeout=timeout),
        )
        self._bot = Bot(
            token=token,
            base_url=f"{base}/bot",
            base_file_url=f"{base}/file/bot",
            request=self._requests[0],
            get_updates_request=self._requests[1],
        )

    async def send_message(
        self,
        chat_id: int,
        text: str,
        reply_markup: Optional[dict] = None,
        parse_mode: Optional[str] = None,
    ) -> int:
        if reply_markup or parse_mode:
            return await self._http.send_message(chat_id, text, reply_markup=reply_markup, parse_mode=parse_mode)
        try:
            sent = await self._bot.send_message(chat_id=chat_id, text=text)
        except TelegramError as exc:
            raise TelegramApiError(exc.message) from exc
        return sent.message_id

    async def send_document(
        self,
        chat_id: int,
        document: Union[str, bytes],
        file_name: Optional[str] = None,
        caption: Optional[str] = None,
        mime: Optional[str] = None,
    ) -> int:
        try:
            sent = await self._bot.send_document(
                chat_id=chat_id,
                document=document,
                filename=file_name if isinstance(document, bytes) else None,
                caption=caption or None,
            )
        except TelegramError as exc:
            raise TelegramApiError(exc.message) from exc
        return sent.message_id

    async def send_voice(
        self,
        chat_id: int,
        voice: bytes,
        file_name: str = "voice.ogg",
        mime: str = "audio/ogg",
        duration: Optional[int] = None,
        caption: Optional[str] = None,
    ) -> SentVoice:
        return await self._http.send_voice(
            chat_id, voice, file_name=file_name, mime=mime, duration=duration, caption=caption
        )

    async def copy_message(self, chat_id: int, from_chat_id: int, message_id: int) -> int:
        return await self._http.copy_message(chat_id, from_chat_id, message_id)

    async def get_file(self, file_id: str) -> str:
        try:
            telegram_file = await self._bot.get_file(file_id)
        except TelegramError as exc:
            raise TelegramApiError(exc.message) from exc
        file_path = telegram_file.file_path
        if not file_path:
            raise TelegramApiError("Telegram getFile returned no file_path")
        # The SDK expands file_path into a full download URL.
        prefix = f"{self._bot.base_file_url}/"
        if file_path.startswith(prefix):
            file_path = file_path[len(prefix):]
        return file_path

    async def download_file(self, file_path: str) -> bytes:
        return await self._http.download_file(file_path)

    async def answer_callback_query(self, callback_query_id: str, text: Optional[str] = None) -> None:
        await self._http.answer_callback_query(callback_query_id, text=text)

    async def aclose(self) -> None:
        # Bot.shutdown is a no-op unless initialize() ran, so close the pools directly.
        for request in self._requests:
            await request.shutdown()


BotClient = Union[SdkBotClient, HttpBotClient]


@dataclass
class _CacheEntry:
    client: BotClient
    expires_at: float


_client_cache: dict[str, _CacheEntry] = {}
_pending_closes: set = set()


def _transport_mode() -> str:
    return (settings.telegram_transport or "").strip().lower() or "auto"


def _cache_key(token: str, transport: str) -> str:
    return f"{PROCESS_START}:{transport}:{token}"


def _build_client(token: str, transport: str) -> BotClient:
    http = HttpBotClient(token)
    if transport == "http":
        return http
    try:
        return SdkBotClient(token, http)
    except Exception as exc:
        logger.warning(
            "Telegram SDK unavailable, using HTTP transport",
            extra={"context": {"error": str(exc)}},
        )
        return http


async def _close_client(client: BotClient) -> None:
    try:
        await client.aclose()
    except Exception as exc:
        logger.warning("Failed to close Telegram client", extra={"context": {"error": str(exc)}})


def _discard_client(client: BotClient) -> None:
    """Close an evicted client on the running loop, or right away when there is none."""
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        asyncio.run(_close_client(client))
        return
    task = loop.create_task(_close_client(client))
    _pending_closes.add(task)
    task.add_done_callback(_pending_closes.discard)


def _sweep_expired(now: float) -> None:
    for key in [key for key, entry in _client_cache.items() if entry.expires_at <= now]:
        _discard_client(_client_cache.pop(key).client)


def get_bot_client(token: str) -> BotClient:
    """Return a cached client for a plaintext bot token."""
    token = (token or "").strip()
    if not token:
        raise ValueError("Telegram bot token is empty")

    transport = _transport_mode()
    key = _cache_key(token, transport)
    now = time.monotonic()

    entry = _client_cache.get(key)
    if entry is not None:
        if entry.expires_at > now:
            return entry.client
        _discard_client(_client_cache.pop(key).client)

    client = _build_client(token, transport)
    if len(_client_cache) >= settings.telegram_client_cache_max_size:
        _sweep_expired(now)
    _client_cache[key] = _CacheEntry(client=client, expires_at=now + settings.telegram_client_ttl_seconds)
    return client


async def close_bot_clients() -> None:
    entries = list(_client_cache.values())
    _client_cache.clear()
    for entry in entries:
        await _close_client(entry.client)


def build_reply_buttons(conversation_id: str, app_url: Optional[str] = None) -> dict:
    """Inline keyboard attached to staff notifications."""
    row = [{"text": "Відповісти", "callback_data": f"reply:{conversation_id}"}]
    base = (app_url or "").rstrip("/")
    if base:
        row.append({"text": "Відкрити", "url": f"{base}/inbox?id={conversation_id}"})
    return {"inline_keyboard": [row]}


def build_force_reply() -> dict:
    return {"force_reply": True, "selective": True}


async def best_effort_call(label: str, call: Awaitable, context: Optional[dict] = None) -> bool:
    """Await a non-essential Telegram call under a short timeout; failures are logged only."""
    try:
        await asyncio.wait_for(call, timeout=settings.telegram_best_effort_timeout_seconds)
        return True
    except Exception as exc:
        logger.warning(
            f"Best-effort {label} failed",
            extra={"context": {**(context or {}), "error": str(exc) or type(exc).__name__}},
        )
        return False
