"""init taskflow tables

Revision ID: 202610180001
Revises:
Create Date: 2026-10-18
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "202610180001"
down_revision = None
branch_labels = None
depends_on = None

TS = sa.DateTime(timezone=True)


def _task_columns() -> list[sa.Column]:
    return [
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("task_no", sa.String(), nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("priority", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("note", sa.String(), nullable=True),
        sa.Column("deadline", TS, nullable=True),
        sa.Column("created_time", TS, nullable=False),
        sa.Column("updated_at", TS, nullable=False),
        sa.Column("edit_time", sa.JSON(), nullable=False),
        sa.Column("reminder_time", sa.JSON(), nullable=False),
        sa.Column("reviewed_time", sa.JSON(), nullable=False),
        sa.Column("document", sa.String(), nullable=True),
        sa.Column("remark", sa.String(), nullable=True),
        sa.Column("is_self_task", sa.Boolean(), nullable=False),
        sa.Column("project_id", sa.String(), nullable=True),
        sa.Column("created_by", sa.String(), nullable=False),
        sa.Column("assigned_to", sa.String(), nullable=True),
        sa.Column("working_by", sa.String(), nullable=True),
        sa.Column("target_team_id", sa.String(), nullable=True),
        sa.Column("target_group_id", sa.String(), nullable=True),
    ]


def _task_constraints() -> list[sa.Constraint]:
    return [
        sa.ForeignKeyConstraint(["id"], ["task_identities.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["project_id"], ["projects.id"]),
        sa.ForeignKeyConstraint(["created_by"], ["users.id"]),
        sa.ForeignKeyConstraint(["assigned_to"], ["users.id"]),
        sa.ForeignKeyConstraint(["working_by"], ["users.id"]),
        sa.ForeignKeyConstraint(["target_team_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["target_group_id"], ["groups.id"]),
        sa.PrimaryKeyConstraint("id"),
    ]


TASK_INDEXES = (
    "title",
    "priority",
    "status",
    "deadline",
    "created_time",
    "is_self_task",
    "project_id",
    "created_by",
    "assigned_to",
    "working_by",
    "target_team_id",
    "target_group_id",
)


def _create_task_indexes(table: str) -> None:
    op.create_index(f"ix_{table}_task_no", table, ["task_no"], unique=True)
    for column in TASK_INDEXES:
        op.create_index(f"ix_{table}_{column}", table, [column])


def _drop_task_indexes(table: str) -> None:
    for column in reversed(TASK_INDEXES):
        op.drop_index(f"ix_{table}_{column}", table_name=table)
    op.drop_index(f"ix_{table}_task_no", table_name=table)


def upgrade() -> None:
    op.create_table(
        "events",
        sa.Column("event_id", sa.String(), nullable=False),
        sa.Column("event_type", sa.String(), nullable=False),
        sa.Column("ts", sa.DateTime(), nullable=False),
        sa.Column("actor_id", sa.String(), nullable=True),
        sa.Column("correlation_id", sa.String(), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.PrimaryKeyConstraint("event_id"),
    )
    op.create_index("ix_events_event_type", "events", ["event_type"])
    op.create_index("ix_events_ts", "events", ["ts"])
    op.create_index("ix_events_actor_id", "events", ["actor_id"])
    op.create_index("ix_events_correlation_id", "events", ["correlation_id"])

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("actor_id", sa.String(), nullable=True),
        sa.Column("action", sa.String(), nullable=False),
        sa.Column("resource", sa.String(), nullable=False),
        sa.Column("method", sa.String(), nullable=False),
        sa.Column("status_code", sa.Integer(), nullable=False),
        sa.Column("ts", sa.DateTime(), nullable=False),
        sa.Column("detail", sa.JSON(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_audit_logs_actor_id", "audit_logs", ["actor_id"])
    op.create_index("ix_audit_logs_ts", "audit_logs", ["ts"])

    op.create_table(
        "users",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("role", sa.String(), nullable=False),
        sa.Column("password_hash", sa.String(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_users_name", "users", ["name"])
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_role", "users", ["role"])
    op.create_index("ix_users_created_at", "users", ["created_at"])

    op.create_table(
        "groups",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("group_no", sa.String(), nullable=False),
        sa.Column("group_name", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_groups_group_no", "groups", ["group_no"], unique=True)
    op.create_index("ix_groups_group_name", "groups", ["group_name"])
    op.create_index("ix_groups_created_at", "groups", ["created_at"])

    op.create_table(
        "group_members",
        sa.Column("group_id", sa.String(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["group_id"], ["groups.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("group_id", "user_id"),
    )
    op.create_index("ix_group_members_created_at", "group_members", ["created_at"])

    op.create_table(
        "projects",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("project_no", sa.String(), nullable=False),
        sa.Column("project_name", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_projects_project_no", "projects", ["project_no"], unique=True)
    op.create_index("ix_projects_project_name", "projects", ["project_name"])
    op.create_index("ix_projects_created_at", "projects", ["created_at"])

    op.create_table(
        "task_identities",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("task_no", sa.String(), nullable=False),
        sa.Column("location", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_task_identities_task_no", "task_identities", ["task_no"], unique=True)
    op.create_index("ix_task_identities_location", "task_identities", ["location"])
    op.create_index("ix_task_identities_created_at", "task_identities", ["created_at"])

    op.create_table("pending_tasks", *_task_columns(), *_task_constraints())
    _create_task_indexes("pending_tasks")

    op.create_table(
        "completed_tasks",
        *_task_columns(),
        sa.Column("complete_time", TS, nullable=True),
        sa.Column("completed_at", TS, nullable=True),
        *_task_constraints(),
    )
    _create_task_indexes("completed_tasks")
    op.create_index("ix_completed_tasks_complete_time", "completed_tasks", ["complete_time"])

    op.create_table(
        "task_acceptances",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("task_id", sa.String(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("group_id", sa.String(), nullable=True),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("action_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["task_id"], ["task_identities.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["group_id"], ["groups.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("task_id", "user_id", name="uq_task_acceptances_task_user"),
    )
    op.create_index("ix_task_acceptances_task_id", "task_acceptances", ["task_id"])
    op.create_index("ix_task_acceptances_user_id", "task_acceptances", ["user_id"])
    op.create_index("ix_task_acceptances_group_id", "task_acceptances", ["group_id"])
    op.create_index("ix_task_acceptances_status", "task_acceptances", ["status"])
    op.create_index("ix_task_acceptances_created_at", "task_acceptances", ["created_at"])

    op.create_table(
        "notifications",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("recipient_id", sa.String(), nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("description", sa.String(), nullable=False),
        sa.Column("type", sa.String(), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("is_read", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("read_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_notifications_recipient_id", "notifications", ["recipient_id"])
    op.create_index("ix_notifications_type", "notifications", ["type"])
    op.create_index("ix_notifications_is_read", "notifications", ["is_read"])
    op.create_index("ix_notifications_created_at", "notifications", ["created_at"])

    op.create_table(
        "task_activities",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("actor_id", sa.String(), nullable=False),
        sa.Column("task_id", sa.String(), nullable=False),
        sa.Column("task_no", sa.String(), nullable=False),
        sa.Column("kind", sa.String(), nullable=False),
        sa.Column("description", sa.String(), nullable=False),
        sa.Column("detail", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_task_activities_actor_id", "task_activities", ["actor_id"])
    op.create_index("ix_task_activities_task_id", "task_activities", ["task_id"])
    op.create_index("ix_task_activities_task_no", "task_activities", ["task_no"])
    op.create_index("ix_task_activities_kind", "task_activities", ["kind"])
    op.create_index("ix_task_activities_created_at", "task_activities", ["created_at"])


def downgrade() -> None:
    op.drop_index("ix_task_activities_created_at", table_name="task_activities")
    op.drop_index("ix_task_activities_kind", table_name="task_activities")
    op.drop_index("ix_task_activities_task_no", table_name="task_activities")
    op.drop_index("ix_task_activities_task_id", table_name="task_activities")
    op.drop_index("ix_task_activities_actor_id", table_name="task_activities")
    op.drop_table("task_activities")

    op.drop_index("ix_notifications_created_at", table_name="notifications")
    op.drop_index("ix_notifications_is_read", table_name="notifications")
    op.drop_index("ix_notifications_type", table_name="notifications")
    op.drop_index("ix_notifications_recipient_id", table_name="notifications")
    op.drop_table("notifications")

    op.drop_index("ix_task_acceptances_created_at", table_name="task_acceptances")
    op.drop_index("ix_task_acceptances_status", table_name="task_acceptances")
    op.drop_index("ix_task_acceptances_group_id", table_name="task_acceptances")
    op.drop_index("ix_task_acceptances_user_id", table_name="task_acceptances")
    op.drop_index("ix_task_acceptances_task_id", table_name="task_acceptances")
    op.drop_table("task_acceptances")

    op.drop_index("ix_completed_tasks_complete_time", table_name="completed_tasks")
    _drop_task_indexes("completed_tasks")
    op.drop_table("completed_tasks")

    _drop_task_indexes("pending_tasks")
    op.drop_table("pending_tasks")

    op.drop_index("ix_task_identities_created_at", table_name="task_identities")
    op.drop_index("ix_task_identities_location", table_name="task_identities")
    op.drop_index("ix_task_identities_task_no", table_name="task_identities")
    op.drop_table("task_identities")

    op.drop_index("ix_projects_created_at", table_name="projects")
    op.drop_index("ix_projects_project_name", table_name="projects")
    op.drop_index("ix_projects_project_no", table_name="projects")
    op.drop_table("projects")

    op.drop_index("ix_group_members_created_at", table_name="group_members")
    op.drop_table("group_members")

    op.drop_index("ix_groups_created_at", table_name="groups")
    op.drop_index("ix_groups_group_name", table_name="groups")
    op.drop_index("ix_groups_group_no", table_name="groups")
    op.drop_table("groups")

    op.drop_index("ix_users_created_at", table_name="users")
    op.drop_index("ix_users_role", table_name="users")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_index("ix_users_name", table_name="users")
    op.drop_table("users")

    op.drop_index("ix_audit_logs_ts", table_name="audit_logs")
    op.drop_index("ix_audit_logs_actor_id", table_name="audit_logs")
    op.drop_table("audit_logs")

    op.drop_index("ix_events_correlation_id", table_name="events")
    op.drop_index("ix_events_actor_id", table_name="events")
    op.drop_index("ix_events_ts", table_name="events")
    op.drop_index("ix_events_event_type", table_name="events")
    op.drop_table("events")
