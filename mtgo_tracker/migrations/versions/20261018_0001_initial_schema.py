"""Initial schema for mtgo-tracker.

Revision ID: 0001
Revises:
Create Date: 2026-10-18

This migration creates all the core tables:
- Events, Players, Standings, Matches, Decks from ingestion
- Archetypes from the MTGGoldfish back-fill
- JobRuns for task audit logging

Games and card lists are JSONB arrays of objects on their parent row.
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

format_type = postgresql.ENUM(
    "Standard",
    "Modern",
    "Pioneer",
    "Vintage",
    "Legacy",
    "Pauper",
    "Limited",
    "Premodern",
    name="formattype",
    create_type=False,
)
event_type = postgresql.ENUM(
    "League",
    "Preliminary",
    "Challenge",
    "Showcase",
    "Qualifier",
    name="eventtype",
    create_type=False,
)
result_type = postgresql.ENUM("win", "loss", "draw", name="resulttype", create_type=False)


def upgrade() -> None:
    bind = op.get_bind()
    format_type.create(bind, checkfirst=True)
    event_type.create(bind, checkfirst=True)
    result_type.create(bind, checkfirst=True)

    # Events table, ids assigned by MTGO
    op.create_table(
        "events",
        sa.Column("id", sa.Integer(), autoincrement=False, nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("format", format_type, nullable=False),
        sa.Column("kind", event_type, nullable=False),
        sa.Column("rounds", sa.Integer(), nullable=False),
        sa.Column("players", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_events_date", "events", ["date"])

    # Players table, negative ids are synthetic
    op.create_table(
        "players",
        sa.Column("id", sa.Integer(), autoincrement=False, nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_players_name", "players", ["name"])

    op.create_table(
        "standings",
        sa.Column("event_id", sa.Integer(), nullable=False),
        sa.Column("rank", sa.Integer(), autoincrement=False, nullable=False),
        sa.Column("player", sa.String(length=100), nullable=False),
        sa.Column("record", sa.String(length=20), nullable=False),
        sa.Column("points", sa.Integer(), nullable=False),
        sa.Column("omwp", sa.Float(), nullable=False),
        sa.Column("gwp", sa.Float(), nullable=False),
        sa.Column("ogwp", sa.Float(), nullable=False),
        sa.ForeignKeyConstraint(["event_id"], ["events.id"]),
        sa.PrimaryKeyConstraint("event_id", "rank"),
        sa.UniqueConstraint("event_id", "player", name="uq_standings_event_player"),
    )

    op.create_table(
        "matches",
        sa.Column("event_id", sa.Integer(), nullable=False),
        sa.Column("round", sa.Integer(), autoincrement=False, nullable=False),
        sa.Column("player", sa.String(length=100), nullable=False),
        sa.Column("id", sa.Integer(), nullable=True),
        sa.Column("opponent", sa.String(length=100), nullable=True),
        sa.Column("record", sa.String(length=20), nullable=False),
        sa.Column("result", result_type, nullable=False),
        sa.Column("is_bye", sa.Boolean(), nullable=False),
        sa.Column("games", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.ForeignKeyConstraint(["event_id"], ["events.id"]),
        sa.PrimaryKeyConstraint("event_id", "round", "player"),
    )
    op.create_index("idx_matches_id", "matches", ["id"])

    op.create_table(
        "decks",
        sa.Column("id", sa.Integer(), autoincrement=False, nullable=False),
        sa.Column("event_id", sa.Integer(), nullable=False),
        sa.Column("player", sa.String(length=100), nullable=False),
        sa.Column("mainboard", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("sideboard", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.ForeignKeyConstraint(["event_id"], ["events.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_decks_event", "decks", ["event_id"])

    op.create_table(
        "archetypes",
        sa.Column("id", sa.Integer(), autoincrement=False, nullable=False),
        sa.Column("deck_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("archetype", sa.String(length=200), nullable=False),
        sa.Column("archetype_id", sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(["deck_id"], ["decks.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("deck_id"),
    )

    # JobRuns table for task audit logging
    op.create_table(
        "job_runs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("job_name", sa.String(length=100), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("records_processed", sa.Integer(), nullable=True, default=0),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("metadata", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )


def downgrade() -> None:
    op.drop_table("job_runs")
    op.drop_table("archetypes")
    op.drop_index("idx_decks_event", table_name="decks")
    op.drop_table("decks")
    op.drop_index("idx_matches_id", table_name="matches")
    op.drop_table("matches")
    op.drop_table("standings")
    op.drop_index("idx_players_name", table_name="players")
    op.drop_table("players")
    op.drop_index("idx_events_date", table_name="events")
    op.drop_table("events")

    bind = op.get_bind()
    result_type.drop(bind, checkfirst=True)
    event_type.drop(bind, checkfirst=True)
    format_type.drop(bind, checkfirst=True)
