"""Signed download URLs from the blob store, used when a file has no Telegram handle."""

from typing import Optional
from urllib.parse import quote

import httpx

from tgbridge.config import settings
from tgbridge.logging_config import get_logger

logger = get_logger("storage_service")


class StorageError(Exception):
    pass


async def create_signed_url(
    storage_path: str,
    ttl_seconds: Optional[int] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> str:
    if not settings.storage_api_url or not settings.storage_service_key:
        raise StorageError("Storage signing is not configured")

    ttl = ttl_seconds if ttl_seconds is not None else settings.storage_signed_url_ttl_seconds
    base = settings.storage_api_url.rstrip("/")
    url = f"{base}/object/sign/{settings.storage_bucket}/{quote(storage_path.lstrip('/'))}"
    headers = {
        "Authorization": f"Bearer {settings.storage_service_key}",
        "apikey": settings.storage_service_key,
    }

    try:
        async with httpx.AsyncClient(timeout=settings.storage_timeout_seconds, transport=transport) as client:
            response = await client.post(url, json={"expiresIn": ttl}, headers=headers)
    except httpx.HTTPError as exc:
        raise StorageError(f"Signed URL request failed: {exc}") from exc

    if response.status_code >= 400:
        logger.warning(
            "Signed URL request rejected",
            extra={"context": {"status": response.status_code, "path": storage_path}},
        )
        raise StorageError(f"Signed URL request failed: HTTP {response.status_code}")

    try:
        data = response.json()
    except ValueError as exc:
        raise StorageError("Signed URL response is not JSON") from exc

    signed = data.get("signedURL") or data.get("signedUrl") if isinstance(data, dict) else None
    if not signed:
        raise StorageError("Signed URL missing in storage response")
    if signed.startswith("http://") or signed.startswith("https://"):
        return signed
    return f"{base}/{signed.lstrip('/')}"
