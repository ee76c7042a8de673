from app.db import get_db

# -------------------------------------------------------------------------
# Container-based Dependencies
# -------------------------------------------------------------------------
# These provide inbox collaborators from the DI container for route handlers.
# Tests override the container providers or ``app.dependency_overrides``.


def get_outbound_dispatcher():
    """Get the outbound dispatcher from the container."""
    from app.container import container

    return container.outbound_dispatcher()


def get_outlook_mail_client():
    """Get the Outlook mail client from the container."""
    from app.container import container

    return container.outlook_mail_client()


def get_connection_registry():
    from app.container import container

    return container.connection_registry()


__all__ = [
    "get_db",
    "get_outbound_dispatcher",
    "get_outlook_mail_client",
    "get_connection_registry",
]
