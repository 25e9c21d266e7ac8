"""initial_schema

Catalog items, grant requests, conversations and stream sessions.

Revision ID: 3c1e7a9b2d40
Revises:
Create Date: 2026-09-02 10:12:44.218301

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3c1e7a9b2d40'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "catalog_items",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("segment", sa.String(32), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("brand", sa.String(200), nullable=True),
        sa.Column("type", sa.String(100), nullable=True),
        sa.Column("sub_type", sa.String(100), nullable=True),
        sa.Column("origin", sa.String(100), nullable=True),
        sa.Column("age", sa.Integer(), nullable=True),
        sa.Column("vintage", sa.Integer(), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("price", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("rating", sa.Float(), nullable=False, server_default="0"),
        sa.Column("shelf_tier", sa.String(20), nullable=False, server_default="lower"),
        sa.Column("is_available", sa.Boolean(), nullable=False, server_default="true"),
    )
    op.create_index("ix_catalog_items_segment", "catalog_items", ["segment"])
    op.create_index("ix_catalog_items_shelf_tier", "catalog_items", ["shelf_tier"])
    op.create_index("ix_catalog_items_is_available", "catalog_items", ["is_available"])

    op.create_table(
        "grant_requests",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("session_id", sa.String(128), nullable=False),
        sa.Column("item_id", sa.String(64), nullable=False),
        sa.Column("requester_name", sa.String(200), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("requested_at", sa.DateTime(), nullable=False),
        sa.Column("resolved_at", sa.DateTime(), nullable=True),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.Column("resolved_by", sa.String(100), nullable=False, server_default="owner"),
        sa.Column("note", sa.Text(), nullable=True),
    )
    op.create_index("ix_grant_requests_status", "grant_requests", ["status"])
    op.create_index("ix_grant_requests_expires_at", "grant_requests", ["expires_at"])
    op.create_index(
        "ix_grant_requests_session_item", "grant_requests", ["session_id", "item_id"]
    )

    op.create_table(
        "conversations",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("session_id", sa.String(128), nullable=False),
        sa.Column("requester_id", sa.String(128), nullable=True),
        sa.Column("platform", sa.String(50), nullable=False, server_default="avatar_stream"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index(
        "ix_conversations_session_id", "conversations", ["session_id"], unique=True
    )
    op.create_index("ix_conversations_requester_id", "conversations", ["requester_id"])

    op.create_table(
        "conversation_messages",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("conversation_id", sa.Integer(), nullable=False),
        sa.Column("role", sa.String(20), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.ForeignKeyConstraint(["conversation_id"], ["conversations.id"], ondelete="CASCADE"),
    )
    op.create_index(
        "ix_conversation_messages_conversation_id",
        "conversation_messages",
        ["conversation_id"],
    )

    op.create_table(
        "stream_sessions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("provider_stream_id", sa.String(128), nullable=False),
        sa.Column("avatar_source", sa.Text(), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="created"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("started_at", sa.DateTime(), nullable=True),
        sa.Column("last_activity_at", sa.DateTime(), nullable=False),
        sa.Column("closed_at", sa.DateTime(), nullable=True),
        sa.Column("close_reason", sa.String(50), nullable=True),
    )
    op.create_index(
        "ix_stream_sessions_provider_stream_id", "stream_sessions", ["provider_stream_id"]
    )
    op.create_index("ix_stream_sessions_status", "stream_sessions", ["status"])


def downgrade() -> None:
    op.drop_table("stream_sessions")
    op.drop_table("conversation_messages")
    op.drop_table("conversations")
    op.drop_table("grant_requests")
    op.drop_table("catalog_items")
