"""Normalize legacy seat maps to label -> holder mappings.

Shows imported from the previous system stored occupied seats as a list of
labels, and some rows carry empty or boolean holders. This rewrites every
seat map into the canonical mapping once, so the reservation path never has
to guess the shape. Unknown holders become the "legacy" sentinel.

Revision ID: 002
Revises: 001
Create Date: 2026-10-19
"""
import json
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

from showbook.services.seat_map import normalize_seat_map

revision: str = "002"
down_revision: Union[str, None] = "001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

shows = sa.table(
    "shows",
    sa.column("id", sa.Integer()),
    sa.column("occupied_seats", sa.JSON()),
    sa.column("version", sa.Integer()),
)


def upgrade() -> None:
    conn = op.get_bind()
    rows = conn.execute(sa.select(shows.c.id, shows.c.occupied_seats)).fetchall()
    for show_id, raw in rows:
        value = json.loads(raw) if isinstance(raw, str) else raw
        normalized = normalize_seat_map(value)
        if normalized == value:
            continue
        conn.execute(
            shows.update()
            .where(shows.c.id == show_id)
            .values(occupied_seats=normalized, version=shows.c.version + 1)
        )


def downgrade() -> None:
    # The mapping is a superset of the list form; nothing to undo
    pass
