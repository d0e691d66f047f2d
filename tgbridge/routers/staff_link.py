from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from tgbridge.auth import StaffContext, require_admin
from tgbridge.database import get_db
from tgbridge.models import Profile
from tgbridge.schemas.staff_link import StaffLinkRequest, StaffLinkResponse, StaffUnlinkResponse
from tgbridge.services.bot_service import get_tenant_bot
from tgbridge.services.staff_service import issue_link_code, unlink_profile

router = APIRouter()


def _get_profile_or_404(db: Session, context: StaffContext, profile_id: UUID) -> Profile:
    profile = db.query(Profile).filter(Profile.tenant_id == context.tenant_id, Profile.id == profile_id).first()
    if profile is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Staff profile not found")
    return profile


@router.post("/staff/telegram-link", response_model=StaffLinkResponse)
def create_telegram_link(
    request: StaffLinkRequest,
    context: StaffContext = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Issue a one-time code the staff member sends to the bot as ``/start CODE``."""
    profile = issue_link_code(db, _get_profile_or_404(db, context, request.profile_id))
    bot = get_tenant_bot(db, context.tenant_id)
    return StaffLinkResponse(
        code=profile.telegram_link_code,
        expires_at=profile.telegram_link_code_expires_at,
        bot_username=bot.bot_username if bot else None,
        already_linked=profile.telegram_chat_id is not None,
    )


@router.delete("/staff/telegram-link", response_model=StaffUnlinkResponse)
def delete_telegram_link(
    profile_id: UUID,
    context: StaffContext = Depends(require_admin),
    db: Session = Depends(get_db),
):
    unlink_profile(db, _get_profile_or_404(db, context, profile_id))
    return StaffUnlinkResponse(ok=True)
