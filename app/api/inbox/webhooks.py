"""Provider webhooks and the Outlook ingest hook.

Every POST answers 200 once the request is authenticated (or
authentication is advisory), including when the payload is malformed or
processing fails, so providers do not retry events we already logged.
"""

import json

from fastapi import APIRouter, Depends, Query, Request, Response, status
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool
from starlette.responses import JSONResponse

from app.api.deps import get_db, get_outlook_mail_client
from app.config import settings
from app.logging import get_logger
from app.services.inbox import signatures
from app.services.inbox.context import set_request_id
from app.services.inbox.conversations import find_latest_conversation
from app.services.inbox.inbound import ingest_inbound, ingest_payload
from app.services.inbox.normalizers import (
    MetaNormalizer,
    NormalizedInbound,
    OutlookNormalizer,
    SendPulseInstagramNormalizer,
    TelegramNormalizer,
    WhatsAppNormalizer,
)
from app.services.inbox.normalizers.whatsapp import strip_whatsapp_prefix
from app.services.inbox.providers.outlook import OutlookMailClient
from app.websocket import broadcaster

logger = get_logger(__name__)

router = APIRouter(tags=["webhooks"])

EMPTY_TWIML = '<?xml version="1.0" encoding="UTF-8"?><Response></Response>'


def _base_url(request: Request) -> str:
    return settings.public_base_url or str(request.base_url).rstrip("/")


def _parse_json(body: bytes, channel: str, trace_id: str):
    try:
        return json.loads(body.decode("utf-8") or "null")
    except (UnicodeDecodeError, ValueError) as exc:
        logger.warning("webhook_invalid_payload channel=%s trace_id=%s error=%s", channel, trace_id, exc)
        return None


def _ingest(db: Session, normalizer, payload, base_url: str, channel: str, trace_id: str) -> dict:
    try:
        stored = ingest_payload(db, normalizer, payload, base_url=base_url)
    except Exception:
        logger.exception("webhook_processing_failed channel=%s trace_id=%s", channel, trace_id)
        return {"status": "error"}
    return {"status": "ok", "processed": len(stored)}


def _verify_subscription(hub_mode: str | None, hub_verify_token: str | None, hub_challenge: str | None, channel: str):
    expected_token = settings.meta_verify_token
    if not expected_token:
        logger.warning("%s_webhook_verify_failed reason=no_verify_token_configured", channel)
        return Response(status_code=403)
    if hub_mode == "subscribe" and hub_verify_token == expected_token:
        logger.info("%s_webhook_verified", channel)
        return Response(content=hub_challenge or "", media_type="text/plain")
    logger.warning(
        "%s_webhook_verify_failed mode=%s token_match=%s",
        channel,
        hub_mode,
        hub_verify_token == expected_token,
    )
    return Response(status_code=403)


def _meta_signature_ok(request: Request, body: bytes, channel: str) -> bool:
    """False only when the request must be refused."""
    if not settings.meta_app_secret:
        return True
    valid = signatures.verify_meta_signature(
        body,
        settings.meta_app_secret,
        signature_256=request.headers.get("X-Hub-Signature-256"),
        signature_sha1=request.headers.get("X-Hub-Signature"),
    )
    if valid:
        return True
    logger.warning("%s_webhook_signature_invalid strict=%s", channel, settings.meta_webhook_strict)
    return not settings.meta_webhook_strict


# --------------------------------------------------------------------------
# Meta (Facebook/Instagram) Webhooks
# --------------------------------------------------------------------------


@router.get("/webhooks/meta")
def meta_webhook_verify(
    hub_mode: str = Query(None, alias="hub.mode"),
    hub_verify_token: str = Query(None, alias="hub.verify_token"),
    hub_challenge: str = Query(None, alias="hub.challenge"),
):
    """Answer Meta's subscription handshake by echoing the challenge."""
    return _verify_subscription(hub_mode, hub_verify_token, hub_challenge, "meta")


@router.post("/webhooks/meta", status_code=status.HTTP_200_OK)
async def meta_webhook(request: Request, db: Session = Depends(get_db)):
    trace_id = set_request_id()
    body = await request.body()
    if not _meta_signature_ok(request, body, "meta"):
        return Response(status_code=403)
    payload = _parse_json(body, "meta", trace_id)
    if payload is None:
        return {"status": "ignored"}
    return await run_in_threadpool(_ingest, db, MetaNormalizer(), payload, _base_url(request), "meta", trace_id)


@router.get("/webhooks/instagram")
def instagram_webhook_verify(
    hub_mode: str = Query(None, alias="hub.mode"),
    hub_verify_token: str = Query(None, alias="hub.verify_token"),
    hub_challenge: str = Query(None, alias="hub.challenge"),
):
    return _verify_subscription(hub_mode, hub_verify_token, hub_challenge, "instagram")


@router.post("/webhooks/instagram", status_code=status.HTTP_200_OK)
async def instagram_webhook(request: Request, db: Session = Depends(get_db)):
    trace_id = set_request_id()
    body = await request.body()
    if not _meta_signature_ok(request, body, "instagram"):
        return Response(status_code=403)
    payload = _parse_json(body, "instagram", trace_id)
    if payload is None:
        return {"status": "ignored"}
    normalizer = MetaNormalizer(platform="instagram")
    return await run_in_threadpool(_ingest, db, normalizer, payload, _base_url(request), "instagram", trace_id)


# --------------------------------------------------------------------------
# SendPulse and Telegram
# --------------------------------------------------------------------------


@router.post("/webhooks/sendpulse/instagram", status_code=status.HTTP_200_OK)
async def sendpulse_instagram_webhook(request: Request, db: Session = Depends(get_db)):
    trace_id = set_request_id()
    provided = request.headers.get("x-sendpulse-key") or request.headers.get("authorization")
    if not signatures.verify_shared_key(settings.sendpulse_webhook_key, provided):
        logger.warning("sendpulse_webhook_key_invalid strict=%s", settings.sendpulse_webhook_strict)
        if settings.sendpulse_webhook_strict:
            return Response(status_code=403)
    body = await request.body()
    payload = _parse_json(body, "sendpulse", trace_id)
    if payload is None:
        return {"status": "ignored"}
    return await run_in_threadpool(
        _ingest, db, SendPulseInstagramNormalizer(), payload, _base_url(request), "sendpulse", trace_id
    )


@router.post("/webhooks/telegram", status_code=status.HTTP_200_OK)
async def telegram_webhook(request: Request, db: Session = Depends(get_db)):
    trace_id = set_request_id()
    provided = request.headers.get("X-Telegram-Bot-Api-Secret-Token")
    if not signatures.verify_telegram_secret(settings.telegram_webhook_secret, provided):
        logger.warning("telegram_webhook_secret_invalid strict=%s", settings.telegram_webhook_strict)
        if settings.telegram_webhook_strict:
            return Response(status_code=403)
    body = await request.body()
    payload = _parse_json(body, "telegram", trace_id)
    if payload is None:
        return {"status": "ignored"}
    return await run_in_threadpool(_ingest, db, TelegramNormalizer(), payload, _base_url(request), "telegram", trace_id)


# --------------------------------------------------------------------------
# Twilio WhatsApp
# --------------------------------------------------------------------------


def _twilio_signature_ok(request: Request, form: dict[str, str]) -> bool:
    if not settings.twilio_auth_token:
        return True
    url = str(request.url)
    if settings.public_base_url:
        url = settings.public_base_url.rstrip("/") + request.url.path
        if request.url.query:
            url = f"{url}?{request.url.query}"
    valid = signatures.verify_twilio_signature(
        settings.twilio_auth_token,
        request.headers.get("X-Twilio-Signature"),
        url,
        form,
    )
    if valid:
        return True
    logger.warning("twilio_webhook_signature_invalid strict=%s", settings.twilio_webhook_strict)
    return not settings.twilio_webhook_strict


@router.post("/webhooks/whatsapp", status_code=status.HTTP_200_OK)
async def whatsapp_webhook(request: Request, db: Session = Depends(get_db)):
    trace_id = set_request_id()
    form = {key: str(value) for key, value in (await request.form()).items()}
    if not _twilio_signature_ok(request, form):
        return Response(status_code=403)
    await run_in_threadpool(_ingest, db, WhatsAppNormalizer(), form, _base_url(request), "whatsapp", trace_id)
    return Response(content=EMPTY_TWIML, media_type="application/xml")


def _relay_twilio_status(db: Session, form: dict[str, str]) -> int | None:
    to_number = strip_whatsapp_prefix(form.get("To"))
    if not to_number:
        return None
    conversation = find_latest_conversation(db, "whatsapp", to_number)
    if conversation is None:
        return None
    broadcaster.broadcast_provider_status(
        conversation.id,
        {
            "provider": "twilio",
            "channel": "whatsapp",
            "messageSid": form.get("MessageSid"),
            "status": form.get("MessageStatus"),
            "to": to_number,
        },
    )
    return conversation.id


@router.post("/webhooks/twilio/status", status_code=status.HTTP_200_OK)
async def twilio_status_webhook(request: Request, db: Session = Depends(get_db)):
    """Delivery receipts for outbound WhatsApp messages."""
    form = {key: str(value) for key, value in (await request.form()).items()}
    if not _twilio_signature_ok(request, form):
        return Response(status_code=403)
    logger.info(
        "twilio_status_received sid=%s status=%s",
        form.get("MessageSid"),
        form.get("MessageStatus"),
    )
    try:
        conversation_id = await run_in_threadpool(_relay_twilio_status, db, form)
    except Exception:
        logger.exception("twilio_status_processing_failed sid=%s", form.get("MessageSid"))
        conversation_id = None
    return {"status": "ok", "conversationId": conversation_id}


# --------------------------------------------------------------------------
# Outlook (Microsoft Graph change notifications)
# --------------------------------------------------------------------------


def _process_outlook_notifications(
    db: Session,
    notifications: list,
    mail_client: OutlookMailClient,
    base_url: str,
    trace_id: str,
) -> int:
    normalizer = OutlookNormalizer()
    processed = 0
    for notification in notifications:
        if not isinstance(notification, dict):
            continue
        if settings.ms_client_state and notification.get("clientState") != settings.ms_client_state:
            logger.warning("outlook_notification_client_state_mismatch trace_id=%s", trace_id)
            continue
        message_id = (notification.get("resourceData") or {}).get("id")
        if not message_id:
            continue
        try:
            message = mail_client.fetch_message(message_id)
        except Exception as exc:
            logger.warning("outlook_message_fetch_failed message_id=%s error=%s", message_id, exc)
            continue
        processed += len(ingest_payload(db, normalizer, message, base_url=base_url))
    return processed


@router.get("/webhooks/outlook")
def outlook_webhook_validate(validation_token: str | None = Query(None, alias="validationToken")):
    if validation_token:
        return Response(content=validation_token, media_type="text/plain")
    return {"status": "ok"}


@router.post("/webhooks/outlook", status_code=status.HTTP_200_OK)
async def outlook_webhook(
    request: Request,
    validation_token: str | None = Query(None, alias="validationToken"),
    db: Session = Depends(get_db),
    mail_client: OutlookMailClient = Depends(get_outlook_mail_client),
):
    """Graph subscription validation and new-mail notifications."""
    if validation_token:
        return Response(content=validation_token, media_type="text/plain")
    trace_id = set_request_id()
    payload = _parse_json(await request.body(), "outlook", trace_id)
    notifications = payload.get("value") if isinstance(payload, dict) else None
    if not isinstance(notifications, list):
        return {"status": "ignored"}
    try:
        processed = await run_in_threadpool(
            _process_outlook_notifications,
            db,
            notifications,
            mail_client,
            _base_url(request),
            trace_id,
        )
    except Exception:
        logger.exception("outlook_webhook_processing_failed trace_id=%s", trace_id)
        return {"status": "error"}
    return {"status": "ok", "processed": processed}


@router.post("/ingest/outlook")
def ingest_outlook(request: Request, payload: dict, db: Session = Depends(get_db)):
    """Mail pushed by an external poller, authenticated with the ingest key."""
    provided = request.headers.get("x-ingest-key")
    if not settings.integration_ingest_key or not signatures.verify_shared_key(
        settings.integration_ingest_key, provided
    ):
        return JSONResponse(status_code=403, content={"error": "Forbidden"})
    if not payload.get("fromEmail") or not payload.get("text"):
        return JSONResponse(status_code=400, content={"error": "fromEmail and text are required"})

    result = OutlookNormalizer().normalize(payload)
    if not isinstance(result, NormalizedInbound):
        return JSONResponse(status_code=400, content={"error": result.reason})
    message = ingest_inbound(db, result.channel, result, base_url=_base_url(request))
    return {"ok": True, "duplicate": message is None, "messageId": message.id if message else None}
