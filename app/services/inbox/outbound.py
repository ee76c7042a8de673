"""Outbound delivery of agent replies.

Each channel maps to an ordered list of strategies. The dispatcher walks
the list until one strategy delivers; Facebook and Instagram get the
longest chain (relay, Graph API, then SendPulse for Instagram).
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field

import httpx
from sqlalchemy.orm import Session

from app.models.inbox import Conversation
from app.services.inbox.circuit_breaker import CircuitBreaker, CircuitOpenError
from app.services.inbox.context import get_inbox_logger
from app.services.inbox.conversations import backfill_contact_id
from app.services.inbox.identity import IdentifierResolver
from app.services.inbox.observability import MESSAGE_PROCESSING_TIME, OUTBOUND_MESSAGES
from app.services.inbox.providers.meta_graph import MetaGraphClient
from app.services.inbox.providers.outlook import OutlookMailClient
from app.services.inbox.providers.relay import RelayClient
from app.services.inbox.providers.sendpulse import SendPulseClient
from app.services.inbox.providers.telegram import TelegramClient
from app.services.inbox.providers.twilio import TwilioWhatsAppClient
from app.telemetry import get_tracer

logger = get_inbox_logger(__name__)
tracer = get_tracer(__name__)


class DeliveryFailed(Exception):
    """A provider answered but did not accept the message."""


def is_provider_outage(exc: Exception) -> bool:
    """Transport errors, 429 and 5xx open the circuit; per-recipient rejections do not."""
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        return status == 429 or status >= 500
    return isinstance(exc, httpx.TransportError)


@dataclass(frozen=True)
class OutboundTarget:
    conversation_id: int
    channel: str
    external_id: str | None
    contact_id: str | None = None
    customer_name: str | None = None


@dataclass(frozen=True)
class SendOutcome:
    sent: bool
    method: str
    skipped: bool = False
    contact_id: str | None = None
    resolved_contact_id: str | None = None
    error: str | None = None


@dataclass(frozen=True)
class DispatchResult:
    sent: bool
    method: str
    channel: str | None = None
    contact_id: str | None = None
    external_id: str | None = None
    resolved_contact_id: str | None = None
    attempts: tuple[SendOutcome, ...] = field(default_factory=tuple)


class OutboundStrategy:
    method: str = ""

    def __init__(self, enabled: bool = True, breaker: CircuitBreaker | None = None):
        self.enabled = enabled
        self.breaker = breaker or CircuitBreaker(f"outbound_{self.method}", is_failure=is_provider_outage)

    def is_available(self, target: OutboundTarget) -> bool:
        return self.enabled

    def send(self, target: OutboundTarget, content: str) -> SendOutcome:
        raise NotImplementedError

    def attempt(self, target: OutboundTarget, content: str) -> SendOutcome:
        if not self.is_available(target):
            return SendOutcome(sent=False, method=self.method, skipped=True)
        if not target.external_id:
            return SendOutcome(sent=False, method=self.method, skipped=True, error="missing_external_id")
        try:
            return self.breaker.call(self.send, target, content)
        except CircuitOpenError as exc:
            logger.warning("outbound_circuit_open method=%s conversation_id=%s", self.method, target.conversation_id)
            return SendOutcome(sent=False, method=self.method, error=str(exc))
        except (httpx.HTTPError, DeliveryFailed, ValueError) as exc:
            logger.warning(
                "outbound_attempt_failed method=%s channel=%s conversation_id=%s error=%s",
                self.method,
                target.channel,
                target.conversation_id,
                exc,
            )
            return SendOutcome(sent=False, method=self.method, error=str(exc))


class TelegramStrategy(OutboundStrategy):
    method = "telegram"

    def __init__(self, client: TelegramClient | None, **kwargs):
        super().__init__(**kwargs)
        self.client = client

    def is_available(self, target: OutboundTarget) -> bool:
        return self.enabled and self.client is not None and bool(self.client.bot_token)

    def send(self, target: OutboundTarget, content: str) -> SendOutcome:
        self.client.send_message(target.external_id, content)
        return SendOutcome(sent=True, method=self.method)


class OutlookMailStrategy(OutboundStrategy):
    method = "outlook"

    def __init__(self, client: OutlookMailClient | None, **kwargs):
        super().__init__(**kwargs)
        self.client = client

    def is_available(self, target: OutboundTarget) -> bool:
        return self.enabled and self.client is not None

    def send(self, target: OutboundTarget, content: str) -> SendOutcome:
        self.client.send_mail(target.external_id, f"Re: Conversation #{target.conversation_id}", content)
        return SendOutcome(sent=True, method=self.method)


class WhatsAppStrategy(OutboundStrategy):
    method = "twilio"

    def __init__(self, client: TwilioWhatsAppClient | None, **kwargs):
        super().__init__(**kwargs)
        self.client = client

    def is_available(self, target: OutboundTarget) -> bool:
        if self.client is None:
            logger.error(
                "outbound_config_error method=%s reason=client_not_initialized conversation_id=%s",
                self.method,
                target.conversation_id,
            )
            return False
        return self.enabled

    def send(self, target: OutboundTarget, content: str) -> SendOutcome:
        self.client.send_message(target.external_id, content)
        return SendOutcome(sent=True, method=self.method)


class RelayStrategy(OutboundStrategy):
    method = "relay"

    def __init__(self, client: RelayClient | None, **kwargs):
        super().__init__(**kwargs)
        self.client = client

    def is_available(self, target: OutboundTarget) -> bool:
        return self.enabled and self.client is not None and self.client.is_configured(target.channel)

    def send(self, target: OutboundTarget, content: str) -> SendOutcome:
        accepted = self.client.send(
            target.channel,
            target.external_id,
            content,
            conversation_id=target.conversation_id,
            contact_id=target.contact_id,
        )
        if not accepted:
            raise DeliveryFailed("relay did not accept the message")
        return SendOutcome(sent=True, method=self.method, contact_id=target.contact_id)


class MetaGraphStrategy(OutboundStrategy):
    method = "meta_graph"

    def __init__(self, client: MetaGraphClient | None, **kwargs):
        super().__init__(**kwargs)
        self.client = client

    def is_available(self, target: OutboundTarget) -> bool:
        return self.enabled and self.client is not None and bool(self.client.token_for(target.channel))

    def send(self, target: OutboundTarget, content: str) -> SendOutcome:
        self.client.send_message(target.channel, target.external_id, content)
        return SendOutcome(sent=True, method=self.method)


class SendPulseStrategy(OutboundStrategy):
    """Instagram DMs through SendPulse.

    Uses the stored contact id, else asks the resolver, else falls back to
    the chat id and hopes SendPulse accepts it.
    """

    method = "sendpulse"

    def __init__(self, client: SendPulseClient | None, resolver: IdentifierResolver | None = None, **kwargs):
        super().__init__(**kwargs)
        self.client = client
        self.resolver = resolver

    def is_available(self, target: OutboundTarget) -> bool:
        return self.enabled and self.client is not None and target.channel == "instagram"

    def send(self, target: OutboundTarget, content: str) -> SendOutcome:
        contact_id = target.contact_id
        resolved_contact_id = None
        base = None
        if not contact_id and self.resolver is not None:
            resolved = self.resolver.resolve_contact_id(target.external_id)
            if resolved:
                contact_id = resolved_contact_id = resolved.contact_id
                base = resolved.base
        contact_id = contact_id or target.external_id
        if not self.client.send_instagram_message(contact_id, content, base=base):
            if resolved_contact_id:
                self.resolver.forget(target.external_id)
            raise DeliveryFailed(f"SendPulse rejected message for contact {contact_id}")
        return SendOutcome(
            sent=True,
            method=self.method,
            contact_id=contact_id,
            resolved_contact_id=resolved_contact_id,
        )


class OutboundDispatcher:
    """Runs the strategy chain for a conversation's channel.

    In strict mode only the relay stage is trusted: when it is missing or
    fails the reply is reported as not sent.
    """

    def __init__(self, strategies: dict[str, list[OutboundStrategy]], strict: bool = False):
        self.strategies = strategies
        self.strict = strict

    def dispatch(self, target: OutboundTarget, content: str) -> DispatchResult:
        chain = self.strategies.get(target.channel) or []
        if not chain:
            logger.info("outbound_no_route channel=%s conversation_id=%s", target.channel, target.conversation_id)
            return DispatchResult(
                sent=False,
                method="none",
                channel=target.channel,
                contact_id=target.contact_id,
                external_id=target.external_id,
            )

        start = time.perf_counter()
        attempts: list[SendOutcome] = []
        try:
            for strategy in chain:
                outcome = strategy.attempt(target, content)
                attempts.append(outcome)
                status = "sent" if outcome.sent else ("skipped" if outcome.skipped else "failed")
                OUTBOUND_MESSAGES.labels(channel=target.channel, method=outcome.method, status=status).inc()
                if outcome.sent:
                    logger.info(
                        "outbound_sent channel=%s method=%s conversation_id=%s",
                        target.channel,
                        outcome.method,
                        target.conversation_id,
                    )
                    return DispatchResult(
                        sent=True,
                        method=outcome.method,
                        channel=target.channel,
                        contact_id=outcome.contact_id or target.contact_id,
                        external_id=target.external_id,
                        resolved_contact_id=outcome.resolved_contact_id,
                        attempts=tuple(attempts),
                    )
                if self.strict and strategy.method == RelayStrategy.method:
                    break
        finally:
            MESSAGE_PROCESSING_TIME.labels(channel=target.channel, direction="outbound").observe(
                time.perf_counter() - start
            )

        attempted = [outcome for outcome in attempts if not outcome.skipped]
        logger.warning(
            "outbound_exhausted channel=%s conversation_id=%s attempts=%s",
            target.channel,
            target.conversation_id,
            [outcome.method for outcome in attempted],
        )
        return DispatchResult(
            sent=False,
            method=attempted[-1].method if attempted else "none",
            channel=target.channel,
            contact_id=target.contact_id,
            external_id=target.external_id,
            attempts=tuple(attempts),
        )

    def send_for_conversation(self, db: Session, conversation_id: int, content: str) -> DispatchResult:
        try:
            conversation = db.get(Conversation, conversation_id)
            if conversation is None:
                logger.warning("outbound_conversation_missing conversation_id=%s", conversation_id)
                return DispatchResult(sent=False, method="none")
            target = OutboundTarget(
                conversation_id=conversation.id,
                channel=conversation.channel_name,
                external_id=conversation.customer_external_id,
                contact_id=conversation.customer_contact_id,
                customer_name=conversation.customer_name,
            )
            with tracer.start_as_current_span(
                "inbox.outbound", attributes={"inbox.channel": target.channel or ""}
            ) as span:
                result = self.dispatch(target, content)
                span.set_attribute("inbox.outbound.method", result.method)
                span.set_attribute("inbox.outbound.sent", result.sent)
            if result.resolved_contact_id:
                backfill_contact_id(db, conversation.id, result.resolved_contact_id)
            return result
        except Exception:
            logger.exception("outbound_dispatch_error conversation_id=%s", conversation_id)
            return DispatchResult(sent=False, method="error")

    def dispatch_outbound(self, db: Session, conversation_id: int, content: str) -> bool:
        return self.send_for_conversation(db, conversation_id, content).sent
