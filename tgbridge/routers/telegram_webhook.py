from typing import Optional

from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from tgbridge.database import get_db
from tgbridge.schemas.telegram import WebhookResponse
from tgbridge.services.webhook_service import WebhookOutcome, ingest_update

router = APIRouter()

SECRET_HEADER = "X-Telegram-Bot-Api-Secret-Token"
SUCCESS_OUTCOMES = {WebhookOutcome.ACCEPTED, WebhookOutcome.DUPLICATE}


@router.post("/telegram/webhook/{public_id}", response_model=WebhookResponse)
async def telegram_webhook(
    public_id: str,
    request: Request,
    db: Session = Depends(get_db),
    secret_token: Optional[str] = Header(default=None, alias=SECRET_HEADER),
):
    """Receive one Telegram update for the bot routed by ``public_id``."""
    try:
        payload = await request.json()
    except ValueError:
        payload = None

    result = await ingest_update(db, public_id, secret_token, payload)
    response = WebhookResponse(
        ok=result.outcome in SUCCESS_OUTCOMES,
        duplicate=True if result.outcome == WebhookOutcome.DUPLICATE else None,
        error=result.error,
    )
    return JSONResponse(status_code=result.status_code, content=response.model_dump(exclude_none=True))
