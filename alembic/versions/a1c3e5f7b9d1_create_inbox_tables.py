"""create inbox tables

Revision ID: a1c3e5f7b9d1
Revises:
Create Date: 2026-10-01 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "a1c3e5f7b9d1"
down_revision = None
branch_labels = None
depends_on = None

conversation_status = postgresql.ENUM("open", "pending", "closed", name="conversation_status", create_type=False)
message_sender = postgresql.ENUM("customer", "agent", name="message_sender", create_type=False)


def upgrade() -> None:
    conversation_status.create(op.get_bind(), checkfirst=True)
    message_sender.create(op.get_bind(), checkfirst=True)

    op.create_table(
        "channels",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(40), nullable=False, unique=True),
        sa.Column("type", sa.String(40), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "agents",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(50), nullable=False, unique=True),
        sa.Column("online", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("socket_id", sa.String(64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "conversations",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("customer_name", sa.String(80), nullable=False),
        sa.Column("status", conversation_status, server_default="open", nullable=False),
        sa.Column(
            "assigned_agent_id",
            sa.Integer(),
            sa.ForeignKey("agents.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("channel_id", sa.Integer(), sa.ForeignKey("channels.id"), nullable=True),
        sa.Column("customer_external_id", sa.String(255), nullable=True),
        sa.Column("customer_contact_id", sa.String(255), nullable=True),
        sa.Column("last_sender", message_sender, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("last_activity_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index(
        "uq_conversations_open_customer",
        "conversations",
        ["channel_id", "customer_external_id"],
        unique=True,
        postgresql_where=sa.text("status = 'open'"),
        sqlite_where=sa.text("status = 'open'"),
    )
    op.create_index("ix_conversations_status_assigned", "conversations", ["status", "assigned_agent_id"])
    op.create_index("ix_conversations_last_activity_at", "conversations", ["last_activity_at"])

    op.create_table(
        "messages",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "conversation_id",
            sa.Integer(),
            sa.ForeignKey("conversations.id", ondelete="CASCADE"),
            nullable=True,
        ),
        sa.Column("username", sa.String(80), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column(
            "sender",
            message_sender,
            server_default="customer",
            nullable=False,
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_messages_conversation_created", "messages", ["conversation_id", "created_at"])


def downgrade() -> None:
    op.drop_index("ix_messages_conversation_created", table_name="messages")
    op.drop_table("messages")
    op.drop_index("ix_conversations_last_activity_at", table_name="conversations")
    op.drop_index("ix_conversations_status_assigned", table_name="conversations")
    op.drop_index("uq_conversations_open_customer", table_name="conversations")
    op.drop_table("conversations")
    op.drop_table("agents")
    op.drop_table("channels")
    conversation_status.drop(op.get_bind(), checkfirst=True)
    message_sender.drop(op.get_bind(), checkfirst=True)
