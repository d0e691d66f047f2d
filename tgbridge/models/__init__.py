from tgbridge.models.audit_log import AuditLog
from tgbridge.models.client import Client
from tgbridge.models.client_accountant import ClientAccountant
from tgbridge.models.conversation import Conversation
from tgbridge.models.document import Document
from tgbridge.models.message import Message, MessageDirection, MessageSource, MessageStatus
from tgbridge.models.message_attachment import MessageAttachment
from tgbridge.models.profile import Profile
from tgbridge.models.telegram_contact import TelegramContact
from tgbridge.models.telegram_update_raw import TelegramUpdateRaw
from tgbridge.models.tenant_bot import TenantBot

__all__ = [
    "TenantBot",
    "TelegramContact",
    "TelegramUpdateRaw",
    "Conversation",
    "Message",
    "MessageAttachment",
    "MessageDirection",
    "MessageSource",
    "MessageStatus",
    "Document",
    "Profile",
    "Client",
    "ClientAccountant",
    "AuditLog",
]
