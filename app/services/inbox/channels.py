from __future__ import annotations

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models.inbox import Channel
from app.services.inbox.context import get_inbox_logger

logger = get_inbox_logger(__name__)


def get_or_create_channel(db: Session, name: str, channel_type: str | None = None) -> Channel:
    """Upsert a channel by its unique name; the latest type wins."""
    channel_type = channel_type or name
    channel = db.query(Channel).filter(Channel.name == name).first()
    if channel:
        if channel.type != channel_type:
            channel.type = channel_type
            db.commit()
            db.refresh(channel)
        return channel

    channel = Channel(name=name, type=channel_type)
    db.add(channel)
    try:
        db.commit()
    except IntegrityError:
        # Another worker created it first.
        db.rollback()
        channel = db.query(Channel).filter(Channel.name == name).one()
        if channel.type != channel_type:
            channel.type = channel_type
            db.commit()
    db.refresh(channel)
    logger.info("channel_created name=%s type=%s", name, channel_type)
    return channel
