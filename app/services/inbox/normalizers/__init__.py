from app.services.inbox.normalizers.base import (
    PLACEHOLDER_TEXT,
    InboundNormalizer,
    NormalizedInbound,
    Rejected,
)
from app.services.inbox.normalizers.meta import MetaNormalizer
from app.services.inbox.normalizers.outlook import OutlookNormalizer, parse_sendpulse_email_bridge
from app.services.inbox.normalizers.sendpulse import SendPulseInstagramNormalizer
from app.services.inbox.normalizers.telegram import TelegramNormalizer
from app.services.inbox.normalizers.whatsapp import WhatsAppNormalizer

__all__ = [
    "PLACEHOLDER_TEXT",
    "InboundNormalizer",
    "MetaNormalizer",
    "NormalizedInbound",
    "OutlookNormalizer",
    "Rejected",
    "SendPulseInstagramNormalizer",
    "TelegramNormalizer",
    "WhatsAppNormalizer",
    "parse_sendpulse_email_bridge",
]
