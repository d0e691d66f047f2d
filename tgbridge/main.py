import os

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session

from tgbridge.config import settings
from tgbridge.database import get_db
from tgbridge.logging_config import get_logger, setup_logging
from tgbridge.models import Conversation, Message, TelegramContact, TelegramUpdateRaw
from tgbridge.routers import conversations, documents, staff_link, telegram_webhook
from tgbridge.services.job_service import is_worker_queue_enabled
from tgbridge.services.telegram_service import close_bot_clients

setup_logging(settings.log_level)
logger = get_logger("main")

app = FastAPI(
    title="tgbridge",
    description="Telegram chat integration for staff inboxes",
    version="0.1.0",
)

cors_env = os.environ.get("CORS_ALLOW_ORIGINS", "*")
cors_origins = [origin.strip() for origin in cors_env.split(",") if origin.strip()]
if not cors_origins:
    cors_origins = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(telegram_webhook.router)
app.include_router(conversations.router)
app.include_router(staff_link.router)
app.include_router(documents.router)


@app.on_event("startup")
async def log_startup() -> None:
    logger.info(
        "tgbridge started",
        extra={
            "context": {
                "job_mode": "celery" if is_worker_queue_enabled() else "inline",
                "telegram_transport": settings.telegram_transport,
            }
        },
    )


@app.on_event("shutdown")
async def close_telegram_clients() -> None:
    await close_bot_clients()


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/db-check")
def db_check(db: Session = Depends(get_db)):
    return {
        "status": "ok",
        "contacts": db.query(TelegramContact).count(),
        "conversations": db.query(Conversation).count(),
        "messages": db.query(Message).count(),
        "pending_updates": db.query(TelegramUpdateRaw).filter(TelegramUpdateRaw.processed_at.is_(None)).count(),
    }
