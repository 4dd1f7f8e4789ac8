"""add social messaging tables

Revision ID: s1b2c3d4e5f6
Revises: s0a1b2c3d4e5
Create Date: 2026-10-02 12:00:00.000000

"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = "s1b2c3d4e5f6"
down_revision = "s0a1b2c3d4e5"
branch_labels = None
depends_on = None


_ENUMS = {
    "socialplatform": ("messenger", "instagram"),
    "threadowner": ("app", "page_inbox", "secondary_app"),
    "threadcontrolaction": ("pass", "take", "request"),
    "messagedirection": ("inbound", "outbound"),
    "messagestatus": ("sent", "delivered", "read", "failed"),
    "messagekind": (
        "text",
        "image",
        "video",
        "audio",
        "file",
        "sticker",
        "location",
        "template",
        "postback",
        "story_mention",
        "share",
        "fallback",
    ),
    "webhookeventstatus": ("pending", "processed", "failed"),
    "unifiedconversationstatus": ("open", "pending", "resolved"),
    "commentdmstatus": ("pending", "sent", "failed"),
}


def _enum(name: str) -> postgresql.ENUM:
    return postgresql.ENUM(*_ENUMS[name], name=name, create_type=False)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    bind = op.get_bind()
    for name, values in _ENUMS.items():
        sa.Enum(*values, name=name).create(bind, checkfirst=True)

    op.create_table(
        "social_connections",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("organization_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("platform", _enum("socialplatform"), nullable=False),
        sa.Column("account_id", sa.String(64), nullable=False),
        sa.Column("page_id", sa.String(64), nullable=True),
        sa.Column("account_name", sa.String(200), nullable=True),
        sa.Column("app_id", sa.String(64), nullable=True),
        sa.Column("access_token", sa.Text(), nullable=True),
        sa.Column("secondary_receiver_app_ids", sa.JSON(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=True),
        sa.Column("webhook_subscribed", sa.Boolean(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("platform", "account_id", name="uq_social_connections_platform_account"),
    )
    op.create_index(
        "ix_social_connections_org_platform",
        "social_connections",
        ["organization_id", "platform"],
    )

    op.create_table(
        "unified_conversations",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("organization_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("channel", sa.String(40), nullable=False),
        sa.Column("status", _enum("unifiedconversationstatus"), nullable=True),
        sa.Column("last_message_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_unified_conversations_organization_id",
        "unified_conversations",
        ["organization_id"],
    )

    op.create_table(
        "unified_messages",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("conversation_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("organization_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("direction", _enum("messagedirection"), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("message_type", sa.String(20), nullable=True),
        sa.Column("channel", sa.String(40), nullable=False),
        sa.Column("channel_message_id", sa.String(255), nullable=False),
        sa.Column("status", _enum("messagestatus"), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["conversation_id"], ["unified_conversations.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "conversation_id",
            "channel",
            "channel_message_id",
            name="uq_unified_messages_channel_message",
        ),
    )

    op.create_table(
        "social_conversations",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("connection_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("organization_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("platform", _enum("socialplatform"), nullable=False),
        sa.Column("participant_id", sa.String(64), nullable=False),
        sa.Column("participant_name", sa.String(200), nullable=True),
        sa.Column("participant_username", sa.String(120), nullable=True),
        sa.Column("participant_profile_pic", sa.Text(), nullable=True),
        sa.Column("thread_id", sa.String(160), nullable=True),
        sa.Column("last_message_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("unread_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=True),
        sa.Column("thread_owner", _enum("threadowner"), nullable=False, server_default="app"),
        sa.Column("thread_owner_app_id", sa.String(64), nullable=True),
        sa.Column("control_requested_by_app_id", sa.String(64), nullable=True),
        sa.Column("control_requested_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_read_watermark", sa.BigInteger(), nullable=True),
        sa.Column("last_delivery_watermark", sa.BigInteger(), nullable=True),
        sa.Column("unified_conversation_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["connection_id"], ["social_connections.id"]),
        sa.ForeignKeyConstraint(["unified_conversation_id"], ["unified_conversations.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("connection_id", "participant_id", name="uq_social_conversations_participant"),
    )
    op.create_index(
        "ix_social_conversations_org_last_msg",
        "social_conversations",
        ["organization_id", "last_message_at"],
    )
    op.create_index("ix_social_conversations_thread_owner", "social_conversations", ["thread_owner"])

    op.create_table(
        "social_messages",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("conversation_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("platform_message_id", sa.String(255), nullable=False),
        sa.Column("direction", _enum("messagedirection"), nullable=False),
        sa.Column("sender_id", sa.String(64), nullable=False),
        sa.Column("recipient_id", sa.String(64), nullable=False),
        sa.Column("kind", _enum("messagekind"), nullable=False),
        sa.Column("text", sa.Text(), nullable=True),
        sa.Column("media_url", sa.Text(), nullable=True),
        sa.Column("media_type", sa.String(20), nullable=True),
        sa.Column("template_type", sa.String(40), nullable=True),
        sa.Column("template_payload", sa.JSON(), nullable=True),
        sa.Column("quick_reply_payload", sa.Text(), nullable=True),
        sa.Column("postback_payload", sa.Text(), nullable=True),
        sa.Column("postback_title", sa.String(255), nullable=True),
        sa.Column("story_id", sa.String(120), nullable=True),
        sa.Column("rich_title", sa.String(500), nullable=True),
        sa.Column("rich_url", sa.Text(), nullable=True),
        sa.Column("reply_to_message_id", sa.String(255), nullable=True),
        sa.Column("status", _enum("messagestatus"), nullable=True),
        sa.Column("error_code", sa.String(40), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("platform_timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("delivered_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["conversation_id"], ["social_conversations.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("conversation_id", "platform_message_id", name="uq_social_messages_native_id"),
    )
    op.create_index(
        "ix_social_messages_conv_ts",
        "social_messages",
        ["conversation_id", "platform_timestamp"],
    )

    op.create_table(
        "social_thread_control_log",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("conversation_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("action", _enum("threadcontrolaction"), nullable=False),
        sa.Column("from_app_id", sa.String(64), nullable=True),
        sa.Column("to_app_id", sa.String(64), nullable=True),
        sa.Column("resulting_owner", _enum("threadowner"), nullable=False),
        sa.Column("source_event_id", sa.String(255), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["conversation_id"], ["social_conversations.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_social_thread_control_log_conv_created",
        "social_thread_control_log",
        ["conversation_id", "created_at"],
    )

    op.create_table(
        "social_webhook_events",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("event_id", sa.String(255), nullable=False),
        sa.Column("event_type", sa.String(60), nullable=False),
        sa.Column("platform", _enum("socialplatform"), nullable=True),
        sa.Column("connection_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("payload_hash", sa.String(64), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=True),
        sa.Column("status", _enum("webhookeventstatus"), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("last_attempt_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["connection_id"], ["social_connections.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("event_id", name="uq_social_webhook_events_event_id"),
    )
    op.create_index(
        "ix_social_webhook_events_status_created",
        "social_webhook_events",
        ["status", "created_at"],
    )

    op.create_table(
        "social_rate_limit_windows",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("organization_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("messages_sent", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("window_start", sa.DateTime(timezone=True), nullable=False),
        sa.Column("limit_per_hour", sa.Integer(), nullable=False, server_default="200"),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("organization_id", name="uq_social_rate_limit_windows_org"),
    )

    op.create_table(
        "social_comment_rules",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("organization_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("connection_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("name", sa.String(160), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=True),
        sa.Column("trigger_keywords", sa.JSON(), nullable=False),
        sa.Column("trigger_media_ids", sa.JSON(), nullable=True),
        sa.Column("dm_template", sa.Text(), nullable=False),
        sa.Column("dm_delay_seconds", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_per_user_per_day", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("trigger_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("dm_sent_count", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
        sa.ForeignKeyConstraint(["connection_id"], ["social_connections.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_social_comment_rules_organization_id", "social_comment_rules", ["organization_id"])
    op.create_index("ix_social_comment_rules_connection_id", "social_comment_rules", ["connection_id"])

    op.create_table(
        "social_comment_dm_tracking",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("rule_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("comment_id", sa.String(120), nullable=False),
        sa.Column("status", _enum("commentdmstatus"), nullable=False),
        sa.Column("scheduled_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["rule_id"], ["social_comment_rules.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("rule_id", "comment_id", name="uq_social_comment_dm_tracking_rule_comment"),
    )
    op.create_index(
        "ix_social_comment_dm_tracking_rule_user",
        "social_comment_dm_tracking",
        ["rule_id", "user_id", "created_at"],
    )
    op.create_index(
        "ix_social_comment_dm_tracking_due",
        "social_comment_dm_tracking",
        ["status", "scheduled_at"],
    )

    op.create_table(
        "social_story_mentions",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("connection_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("organization_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("story_id", sa.String(120), nullable=False),
        sa.Column("story_url", sa.Text(), nullable=True),
        sa.Column("mentioned_by_id", sa.String(64), nullable=False),
        sa.Column("mentioned_by_username", sa.String(120), nullable=True),
        sa.Column("mentioned_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("responded", sa.Boolean(), nullable=True),
        sa.Column("raw_payload", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["connection_id"], ["social_connections.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "connection_id",
            "story_id",
            "mentioned_by_id",
            name="uq_social_story_mentions_story_author",
        ),
    )


def downgrade() -> None:
    op.drop_table("social_story_mentions")
    op.drop_index("ix_social_comment_dm_tracking_due", table_name="social_comment_dm_tracking")
    op.drop_index("ix_social_comment_dm_tracking_rule_user", table_name="social_comment_dm_tracking")
    op.drop_table("social_comment_dm_tracking")
    op.drop_index("ix_social_comment_rules_connection_id", table_name="social_comment_rules")
    op.drop_index("ix_social_comment_rules_organization_id", table_name="social_comment_rules")
    op.drop_table("social_comment_rules")
    op.drop_table("social_rate_limit_windows")
    op.drop_index("ix_social_webhook_events_status_created", table_name="social_webhook_events")
    op.drop_table("social_webhook_events")
    op.drop_index("ix_social_thread_control_log_conv_created", table_name="social_thread_control_log")
    op.drop_table("social_thread_control_log")
    op.drop_index("ix_social_messages_conv_ts", table_name="social_messages")
    op.drop_table("social_messages")
    op.drop_index("ix_social_conversations_thread_owner", table_name="social_conversations")
    op.drop_index("ix_social_conversations_org_last_msg", table_name="social_conversations")
    op.drop_table("social_conversations")
    op.drop_table("unified_messages")
    op.drop_index("ix_unified_conversations_organization_id", table_name="unified_conversations")
    op.drop_table("unified_conversations")
    op.drop_table("social_connections")

    bind = op.get_bind()
    for name in reversed(list(_ENUMS)):
        sa.Enum(name=name).drop(bind, checkfirst=True)
