"""Events, statistics and job tables."""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "20260901_01"
down_revision = None
branch_labels = None
depends_on = None


def _event_fk() -> sa.Column:
    return sa.Column(
        "event_id",
        sa.Integer(),
        sa.ForeignKey("event.id", ondelete="CASCADE"),
        nullable=False,
    )


def upgrade() -> None:
    op.create_table(
        "event",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("title", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("start", sa.DateTime()),
        sa.Column("end", sa.DateTime()),
        sa.Column("timezone", sa.String(length=64), nullable=False, server_default="UTC"),
        sa.Column("updated", sa.DateTime()),
    )

    op.create_table(
        "event_wiki",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        _event_fk(),
        sa.Column("domain", sa.String(length=255)),
        sa.Column("pages_created", sa.LargeBinary()),
        sa.Column("pages_improved", sa.LargeBinary()),
        sa.Column("pages_files", sa.LargeBinary()),
    )
    op.create_index("ix_event_wiki_event_id", "event_wiki", ["event_id"])

    op.create_table(
        "event_category",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        _event_fk(),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("domain", sa.String(length=255), nullable=False),
    )
    op.create_index("ix_event_category_event_id", "event_category", ["event_id"])

    op.create_table(
        "participant",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        _event_fk(),
        sa.Column("user_id", sa.Integer(), nullable=False),
    )
    op.create_index("ix_participant_event_id", "participant", ["event_id"])

    op.create_table(
        "event_stat",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        _event_fk(),
        sa.Column("metric", sa.String(length=32), nullable=False),
        sa.Column("value", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("offset", sa.Integer()),
        sa.UniqueConstraint("event_id", "metric", name="uq_event_stat_event_metric"),
    )
    op.create_index("ix_event_stat_event_id", "event_stat", ["event_id"])

    op.create_table(
        "event_wiki_stat",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "event_wiki_id",
            sa.Integer(),
            sa.ForeignKey("event_wiki.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("metric", sa.String(length=32), nullable=False),
        sa.Column("value", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("offset", sa.Integer()),
        sa.UniqueConstraint("event_wiki_id", "metric", name="uq_event_wiki_stat_wiki_metric"),
    )
    op.create_index("ix_event_wiki_stat_event_wiki_id", "event_wiki_stat", ["event_wiki_id"])

    op.create_table(
        "job",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "event_id",
            sa.Integer(),
            sa.ForeignKey("event.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
        sa.Column(
            "submitted",
            sa.DateTime(),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="QUEUED"),
    )


def downgrade() -> None:
    op.drop_table("job")
    op.drop_index("ix_event_wiki_stat_event_wiki_id", table_name="event_wiki_stat")
    op.drop_table("event_wiki_stat")
    op.drop_index("ix_event_stat_event_id", table_name="event_stat")
    op.drop_table("event_stat")
    op.drop_index("ix_participant_event_id", table_name="participant")
    op.drop_table("participant")
    op.drop_index("ix_event_category_event_id", table_name="event_category")
    op.drop_table("event_category")
    op.drop_index("ix_event_wiki_event_id", table_name="event_wiki")
    op.drop_table("event_wiki")
    op.drop_table("event")
