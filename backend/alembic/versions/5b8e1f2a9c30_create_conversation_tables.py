"""create conversation threads and messages

Revision ID: 5b8e1f2a9c30
Revises:
Create Date: 2026-10-18
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "5b8e1f2a9c30"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "conversation_threads",
        sa.Column("id", sa.String(length=64), nullable=False),
        sa.Column("tenant_id", sa.String(length=64), nullable=False),
        sa.Column("workflow_id", sa.String(length=255), nullable=False),
        sa.Column("workflow_type", sa.String(length=255), nullable=False),
        sa.Column("agent", sa.String(length=128), nullable=False),
        sa.Column("participant_id", sa.String(length=255), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="Active"),
        sa.Column("is_internal", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.Column("created_by", sa.String(length=64), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tenant_id", "workflow_id", "participant_id", name="uq_conversation_threads_key"),
    )
    op.create_index(op.f("ix_conversation_threads_tenant_id"), "conversation_threads", ["tenant_id"], unique=False)
    op.create_index(
        "ix_conversation_threads_tenant_agent",
        "conversation_threads",
        ["tenant_id", "agent"],
        unique=False,
    )

    op.create_table(
        "conversation_messages",
        sa.Column("id", sa.String(length=64), nullable=False),
        sa.Column("thread_id", sa.String(length=64), nullable=False),
        sa.Column("tenant_id", sa.String(length=64), nullable=False),
        sa.Column("participant_id", sa.String(length=255), nullable=False),
        sa.Column("direction", sa.String(length=16), nullable=False),
        sa.Column("message_type", sa.String(length=16), nullable=False, server_default="Chat"),
        sa.Column("text", sa.Text(), nullable=True),
        sa.Column("data", sa.JSON(), nullable=True),
        sa.Column("scope", sa.String(length=255), nullable=True),
        sa.Column("request_id", sa.String(length=512), nullable=True),
        sa.Column("hint", sa.Text(), nullable=True),
        sa.Column("task_id", sa.String(length=255), nullable=True),
        sa.Column("origin", sa.String(length=255), nullable=True),
        sa.Column("workflow_id", sa.String(length=255), nullable=False),
        sa.Column("workflow_type", sa.String(length=255), nullable=False),
        sa.Column("parent_workflow_id", sa.String(length=255), nullable=True),
        sa.Column("child_workflow_id", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.Column("created_by", sa.String(length=64), nullable=True),
        sa.ForeignKeyConstraint(["thread_id"], ["conversation_threads.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_conversation_messages_thread_id"), "conversation_messages", ["thread_id"], unique=False)
    op.create_index(
        "ix_conversation_messages_thread_created",
        "conversation_messages",
        ["thread_id", "created_at"],
        unique=False,
    )
    op.create_index(
        "ix_conversation_messages_thread_scope",
        "conversation_messages",
        ["thread_id", "scope"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("ix_conversation_messages_thread_scope", table_name="conversation_messages")
    op.drop_index("ix_conversation_messages_thread_created", table_name="conversation_messages")
    op.drop_index(op.f("ix_conversation_messages_thread_id"), table_name="conversation_messages")
    op.drop_table("conversation_messages")
    op.drop_index("ix_conversation_threads_tenant_agent", table_name="conversation_threads")
    op.drop_index(op.f("ix_conversation_threads_tenant_id"), table_name="conversation_threads")
    op.drop_table("conversation_threads")
