"""Dependency injection container.

Holds the long-lived, stateful collaborators of the inbox: provider token
caches, the identifier resolver, provider clients, outbound strategies, the
outbound dispatcher and the live connection registry.

Usage:
    from app.container import get_container

    dispatcher = get_container().outbound_dispatcher()

    # In tests
    with container.outbound_dispatcher.override(fake_dispatcher):
        response = client.post("/api/send-manual-response", ...)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from dependency_injector import containers, providers  # type: ignore[import-not-found]

from app.config import Settings, settings

if TYPE_CHECKING:
    from app.services.inbox.identity import IdentifierResolver
    from app.services.inbox.outbound import OutboundStrategy


def _sendpulse_token_cache(config: Settings):
    from app.services.inbox.providers.sendpulse import SendPulseTokenFetcher, candidate_bases
    from app.services.inbox.tokens import TokenCache

    fetcher = SendPulseTokenFetcher(
        config.sendpulse_client_id,
        config.sendpulse_client_secret,
        candidate_bases(config.sendpulse_api_base),
        timeout=config.outbound_timeout_seconds,
    )
    return TokenCache("sendpulse", fetcher)


def _graph_token_cache(config: Settings):
    from app.services.inbox.providers.outlook import GraphAppTokenFetcher, MsaRefreshTokenFetcher
    from app.services.inbox.tokens import TokenCache

    if config.outlook_personal:
        fetcher = MsaRefreshTokenFetcher(
            config.ms_login_base,
            config.ms_client_id,
            config.ms_refresh_token,
            client_secret=config.ms_client_secret,
            timeout=config.outbound_timeout_seconds,
        )
    else:
        fetcher = GraphAppTokenFetcher(
            config.ms_login_base,
            config.ms_tenant_id,
            config.ms_client_id,
            config.ms_client_secret,
            timeout=config.outbound_timeout_seconds,
        )
    return TokenCache("microsoft_graph", fetcher)


def _identifier_resolver(config: Settings, token_cache):
    from app.services.inbox.identity import IdentifierResolver
    from app.services.inbox.providers.sendpulse import candidate_bases

    return IdentifierResolver(
        token_cache,
        candidate_bases(config.sendpulse_api_base),
        ttl_seconds=config.contact_cache_ttl_seconds,
        timeout=config.outbound_timeout_seconds,
    )


def _relay_client(config: Settings):
    from app.services.inbox.providers.relay import RelayClient

    return RelayClient(
        config.chatbot_outbound_url,
        instagram_url=config.chatbot_outbound_instagram_url,
        key=config.chatbot_outbound_key,
        timeout=config.outbound_timeout_seconds,
    )


def _meta_graph_client(config: Settings):
    from app.services.inbox.providers.meta_graph import MetaGraphClient

    return MetaGraphClient(
        config.meta_graph_base_url,
        page_token=config.fb_page_access_token,
        instagram_token=config.ig_page_access_token,
        timeout=config.outbound_timeout_seconds,
    )


def _sendpulse_client(config: Settings, token_cache):
    from app.services.inbox.providers.sendpulse import SendPulseClient

    return SendPulseClient(token_cache, config.sendpulse_api_base, timeout=config.outbound_timeout_seconds)


def _telegram_client(config: Settings):
    from app.services.inbox.providers.telegram import TelegramClient

    if not config.telegram_bot_token:
        return None
    return TelegramClient(config.telegram_bot_token, config.telegram_api_base, timeout=config.outbound_timeout_seconds)


def _whatsapp_client(config: Settings):
    from app.services.inbox.providers.twilio import TwilioWhatsAppClient

    if not (config.twilio_account_sid and config.twilio_auth_token and config.twilio_whatsapp_from):
        return None
    return TwilioWhatsAppClient(
        config.twilio_account_sid,
        config.twilio_auth_token,
        config.twilio_whatsapp_from,
        status_callback_url=config.twilio_status_callback_url,
        api_base=config.twilio_api_base,
        timeout=config.outbound_timeout_seconds,
    )


def _outlook_mail_client(config: Settings, token_cache):
    from app.services.inbox.providers.outlook import OutlookMailClient

    return OutlookMailClient(
        token_cache,
        mailbox=config.ms_mailbox,
        personal=config.outlook_personal,
        graph_base=config.graph_api_base,
        timeout=config.outbound_timeout_seconds,
    )


def _outbound_strategies(
    config: Settings,
    relay_client,
    meta_graph_client,
    sendpulse_client,
    resolver: IdentifierResolver,
    telegram_client,
    whatsapp_client,
    outlook_mail_client,
) -> dict[str, list[OutboundStrategy]]:
    from app.services.inbox.outbound import (
        MetaGraphStrategy,
        OutlookMailStrategy,
        RelayStrategy,
        SendPulseStrategy,
        TelegramStrategy,
        WhatsAppStrategy,
    )

    def social_chain(channel: str) -> list[OutboundStrategy]:
        chain: list[OutboundStrategy] = [
            RelayStrategy(relay_client),
            MetaGraphStrategy(meta_graph_client, enabled=config.meta_send_enabled),
        ]
        if channel == "instagram":
            chain.append(SendPulseStrategy(sendpulse_client, resolver, enabled=config.sendpulse_send_enabled))
        return chain

    return {
        "facebook": social_chain("facebook"),
        "instagram": social_chain("instagram"),
        "telegram": [TelegramStrategy(telegram_client)],
        "whatsapp": [WhatsAppStrategy(whatsapp_client)],
        "outlook": [OutlookMailStrategy(outlook_mail_client)],
    }


def _outbound_dispatcher(config: Settings, strategies):
    from app.services.inbox.outbound import OutboundDispatcher

    return OutboundDispatcher(strategies, strict=config.chatbot_outbound_strict)


def _connection_registry():
    from app.websocket.registry import ConnectionRegistry

    return ConnectionRegistry()


class Container(containers.DeclarativeContainer):
    """Application dependency injection container.

    Everything here is a singleton: token caches and the resolver cache
    hold state that must be shared across requests.
    """

    config = providers.Object(settings)

    # -------------------------------------------------------------------------
    # Credentials
    # -------------------------------------------------------------------------

    sendpulse_token_cache = providers.Singleton(_sendpulse_token_cache, config)
    graph_token_cache = providers.Singleton(_graph_token_cache, config)

    # -------------------------------------------------------------------------
    # Provider clients
    # -------------------------------------------------------------------------

    identifier_resolver = providers.Singleton(_identifier_resolver, config, sendpulse_token_cache)
    relay_client = providers.Singleton(_relay_client, config)
    meta_graph_client = providers.Singleton(_meta_graph_client, config)
    sendpulse_client = providers.Singleton(_sendpulse_client, config, sendpulse_token_cache)
    telegram_client = providers.Singleton(_telegram_client, config)
    whatsapp_client = providers.Singleton(_whatsapp_client, config)
    outlook_mail_client = providers.Singleton(_outlook_mail_client, config, graph_token_cache)

    # -------------------------------------------------------------------------
    # Outbound delivery and live sessions
    # -------------------------------------------------------------------------

    outbound_strategies = providers.Singleton(
        _outbound_strategies,
        config,
        relay_client,
        meta_graph_client,
        sendpulse_client,
        identifier_resolver,
        telegram_client,
        whatsapp_client,
        outlook_mail_client,
    )
    outbound_dispatcher = providers.Singleton(_outbound_dispatcher, config, outbound_strategies)
    connection_registry = providers.Singleton(_connection_registry)


# Global container instance
container = Container()


def get_container() -> Container:
    """Get the global container instance."""
    return container
