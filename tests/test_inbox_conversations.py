import pytest

from app.models.inbox import Conversation, ConversationStatus
from app.services.inbox import conversations as conversations_service
from app.services.inbox.errors import InboxConflictError, InboxNotFoundError, InboxValidationError


def test_find_or_create_reuses_open_conversation(db_session, telegram_channel):
    first, created = conversations_service.find_or_create_open_conversation(
        db_session, telegram_channel.id, "555", "Ann"
    )
    second, created_again = conversations_service.find_or_create_open_conversation(
        db_session, telegram_channel.id, "555", "Ann"
    )

    assert created is True
    assert created_again is False
    assert first.id == second.id
    open_count = (
        db_session.query(Conversation)
        .filter(Conversation.channel_id == telegram_channel.id)
        .filter(Conversation.customer_external_id == "555")
        .filter(Conversation.status == ConversationStatus.open)
        .count()
    )
    assert open_count == 1


def test_find_or_create_opens_new_after_close(db_session, telegram_channel, make_conversation):
    closed = make_conversation(telegram_channel, external_id="555", status=ConversationStatus.closed)

    conversation, created = conversations_service.find_or_create_open_conversation(
        db_session, telegram_channel.id, "555", "Ann"
    )

    assert created is True
    assert conversation.id != closed.id
    assert conversation.status == ConversationStatus.open


def test_new_conversation_goes_to_least_loaded_agent(db_session, telegram_channel, make_agent, broadcasts):
    agent = make_agent("ann-agent", socket_id="sock-1")

    conversation, _ = conversations_service.find_or_create_open_conversation(
        db_session, telegram_channel.id, "777", "Bob"
    )

    assert conversation.assigned_agent_id == agent.id
    assigned = [event for event in broadcasts if event[2] == "conversation:assigned"]
    assert assigned and assigned[0][1] == "sock-1"


def test_new_conversation_stays_unassigned_without_online_agents(db_session, telegram_channel, make_agent):
    make_agent("offline", online=False, socket_id=None)

    conversation, _ = conversations_service.find_or_create_open_conversation(
        db_session, telegram_channel.id, "778", "Bob"
    )

    assert conversation.assigned_agent_id is None


def test_customer_name_truncated(db_session, telegram_channel):
    conversation, _ = conversations_service.find_or_create_open_conversation(
        db_session, telegram_channel.id, "long", "x" * 200
    )
    assert len(conversation.customer_name) == 80


def test_backfill_contact_id_only_when_missing(db_session, instagram_channel, make_conversation):
    conversation = make_conversation(instagram_channel, external_id="u1")

    assert conversations_service.backfill_contact_id(db_session, conversation.id, "c-1") is True
    assert conversations_service.backfill_contact_id(db_session, conversation.id, "c-2") is False

    db_session.expire_all()
    assert db_session.get(Conversation, conversation.id).customer_contact_id == "c-1"


def test_list_conversations_orders_by_recent_activity(db_session, telegram_channel, make_conversation, timeline):
    old = make_conversation(telegram_channel, external_id="a", created_at=timeline())
    new = make_conversation(telegram_channel, external_id="b", created_at=timeline())

    result = conversations_service.list_conversations(db_session)

    assert [item.id for item in result][:2] == [new.id, old.id]


def test_list_conversations_filters(db_session, telegram_channel, make_conversation, make_agent):
    agent = make_agent()
    mine = make_conversation(telegram_channel, external_id="a", assigned_agent_id=agent.id)
    unassigned = make_conversation(telegram_channel, external_id="b")
    make_conversation(telegram_channel, external_id="c", status=ConversationStatus.closed)

    assert [c.id for c in conversations_service.list_conversations(db_session, assigned_to=str(agent.id))] == [
        mine.id
    ]
    queue = conversations_service.list_conversations(db_session, status="open", assigned_to="null")
    assert [c.id for c in queue] == [unassigned.id]


def test_list_conversations_rejects_unknown_status(db_session):
    with pytest.raises(InboxValidationError):
        conversations_service.list_conversations(db_session, status="archived")


def test_claim_conversation(db_session, telegram_channel, make_conversation, make_agent, broadcasts):
    agent = make_agent("claimer")
    conversation = make_conversation(telegram_channel)

    claimed = conversations_service.claim_conversation(db_session, conversation.id, "claimer")

    assert claimed.assigned_agent_id == agent.id
    agent_events = [event for event in broadcasts if event[2] == "conversation:agent"]
    assert agent_events[0][1] == f"conv:{conversation.id}"
    assert agent_events[0][3]["agent"] == {"id": agent.id, "name": "claimer"}


def test_claim_conversation_unknown_agent(db_session, telegram_channel, make_conversation):
    conversation = make_conversation(telegram_channel)
    with pytest.raises(InboxNotFoundError):
        conversations_service.claim_conversation(db_session, conversation.id, "nobody")


def test_claim_conversation_requires_name(db_session, telegram_channel, make_conversation):
    conversation = make_conversation(telegram_channel)
    with pytest.raises(InboxValidationError):
        conversations_service.claim_conversation(db_session, conversation.id, "  ")


def test_update_status_closes(db_session, telegram_channel, make_conversation):
    conversation = make_conversation(telegram_channel)

    updated = conversations_service.update_status(db_session, conversation.id, "closed")

    assert updated.status == ConversationStatus.closed


def test_reopen_refused_while_another_is_open(db_session, telegram_channel, make_conversation):
    closed = make_conversation(telegram_channel, external_id="dup", status=ConversationStatus.closed)
    make_conversation(telegram_channel, external_id="dup")

    with pytest.raises(InboxConflictError):
        conversations_service.update_status(db_session, closed.id, "open")


def test_update_status_missing_conversation(db_session):
    with pytest.raises(InboxNotFoundError):
        conversations_service.update_status(db_session, 999_999, "closed")


def test_start_web_conversation(db_session, make_agent):
    agent = make_agent("web-agent")

    conversation, assigned = conversations_service.start_web_conversation(db_session, "  Visitor  ")

    assert conversation.channel_name == "web"
    assert conversation.customer_name == "Visitor"
    assert conversation.customer_external_id is None
    assert assigned.id == agent.id


def test_find_latest_conversation_ignores_status(db_session, make_channel, make_conversation, timeline):
    whatsapp = make_channel("whatsapp")
    make_conversation(whatsapp, external_id="+1555", status=ConversationStatus.closed, created_at=timeline())
    latest = make_conversation(whatsapp, external_id="+1555", status=ConversationStatus.closed, created_at=timeline())

    found = conversations_service.find_latest_conversation(db_session, "whatsapp", "+1555")

    assert found.id == latest.id
