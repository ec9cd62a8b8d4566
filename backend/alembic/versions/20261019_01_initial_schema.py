"""room types, rooms, bookings and lock keys

Revision ID: 20261019_01
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "20261019_01"
down_revision = None
branch_labels = None
depends_on = None


ENUMS = {
    "booking_status": ("PENDING_CHECKIN", "CHECKIN_COMPLETED", "CHECKED_IN", "CHECKED_OUT", "CANCELLED"),
    "lock_key_status": ("ACTIVE", "REVOKED", "EXPIRED"),
}

booking_status_enum = postgresql.ENUM(*ENUMS["booking_status"], name="booking_status", create_type=False)
lock_key_status_enum = postgresql.ENUM(*ENUMS["lock_key_status"], name="lock_key_status", create_type=False)


def _jsonb(default: str) -> tuple[postgresql.JSONB, sa.TextClause]:
    return postgresql.JSONB(astext_type=sa.Text()), sa.text(f"'{default}'::jsonb")


def upgrade() -> None:
    for enum_name, values in ENUMS.items():
        value_list = ", ".join(f"'{value}'" for value in values)
        statement = (
            "DO $$ BEGIN "
            f"IF NOT EXISTS (SELECT 1 FROM pg_type WHERE typname = '{enum_name}') THEN "
            f"CREATE TYPE \"{enum_name}\" AS ENUM ({value_list}); "
            "END IF; END $$;"
        )
        op.execute(sa.text(statement))

    op.create_table(
        "room_types",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("base_price", sa.Numeric(10, 2), nullable=False),
        sa.Column("max_occupancy", sa.Integer(), nullable=False, server_default="2"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
    )

    op.create_table(
        "rooms",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("room_number", sa.String(length=16), nullable=False, unique=True),
        sa.Column("room_type_id", sa.String(length=64), sa.ForeignKey("room_types.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("lock_id", sa.String(length=64), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
    )
    op.create_index("ix_rooms_room_type_id", "rooms", ["room_type_id"])

    op.create_table(
        "bookings",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("reference_code", sa.String(length=16), nullable=False, unique=True),
        sa.Column("room_type_id", sa.String(length=64), sa.ForeignKey("room_types.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("room_id", sa.String(length=64), sa.ForeignKey("rooms.id", ondelete="SET NULL"), nullable=True),
        sa.Column("status", booking_status_enum, nullable=False, server_default="PENDING_CHECKIN"),
        sa.Column("guest_name", sa.String(length=255), nullable=False),
        sa.Column("guest_email", sa.String(length=255), nullable=False),
        sa.Column("guest_phone", sa.String(length=32), nullable=True),
        sa.Column("check_in_date", sa.Date(), nullable=False),
        sa.Column("check_out_date", sa.Date(), nullable=False),
        sa.Column("base_price", sa.Numeric(10, 2), nullable=False),
        sa.Column("total_price", sa.Numeric(12, 2), nullable=False),
        sa.Column("locale", sa.String(length=8), nullable=False, server_default="en"),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.CheckConstraint("check_out_date > check_in_date", name="ck_bookings_stay_dates"),
    )
    op.create_index("ix_bookings_room_id", "bookings", ["room_id"])
    # Overlap queries filter by room, status and the stay interval.
    op.create_index("ix_bookings_room_stay", "bookings", ["room_id", "status", "check_in_date", "check_out_date"])

    extras_type, extras_default = _jsonb("{}")
    op.create_table(
        "check_in_infos",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("booking_id", sa.Integer(), sa.ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False, unique=True),
        sa.Column("legal_name", sa.String(length=255), nullable=False),
        sa.Column("document_number", sa.String(length=64), nullable=False),
        sa.Column("document_country", sa.String(length=64), nullable=False),
        sa.Column("extras", extras_type, nullable=False, server_default=extras_default),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
    )

    op.create_table(
        "lock_keys",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("booking_id", sa.Integer(), sa.ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False),
        sa.Column("room_id", sa.String(length=64), sa.ForeignKey("rooms.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("lock_id", sa.String(length=64), nullable=False),
        sa.Column("passcode", sa.String(length=32), nullable=False),
        sa.Column("valid_from", sa.DateTime(timezone=True), nullable=False),
        sa.Column("valid_to", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", lock_key_status_enum, nullable=False, server_default="ACTIVE"),
        sa.Column("remote_id", sa.String(length=64), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
    )
    op.create_index("ix_lock_keys_booking_id", "lock_keys", ["booking_id"])
    op.create_index("ix_lock_keys_valid_to", "lock_keys", ["valid_to"])

    payload_type, payload_default = _jsonb("{}")
    op.create_table(
        "booking_events",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("booking_id", sa.Integer(), sa.ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False),
        sa.Column("event_type", sa.String(length=64), nullable=False),
        sa.Column("payload", payload_type, nullable=False, server_default=payload_default),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
    )
    op.create_index("ix_booking_events_booking_id", "booking_events", ["booking_id"])


def downgrade() -> None:
    op.drop_index("ix_booking_events_booking_id", table_name="booking_events")
    op.drop_table("booking_events")

    op.drop_index("ix_lock_keys_valid_to", table_name="lock_keys")
    op.drop_index("ix_lock_keys_booking_id", table_name="lock_keys")
    op.drop_table("lock_keys")

    op.drop_table("check_in_infos")

    op.drop_index("ix_bookings_room_stay", table_name="bookings")
    op.drop_index("ix_bookings_room_id", table_name="bookings")
    op.drop_table("bookings")

    op.drop_index("ix_rooms_room_type_id", table_name="rooms")
    op.drop_table("rooms")

    op.drop_table("room_types")

    for enum_name in ("lock_key_status", "booking_status"):
        statement = (
            "DO $$ BEGIN "
            f"IF EXISTS (SELECT 1 FROM pg_type WHERE typname = '{enum_name}') THEN "
            f"DROP TYPE \"{enum_name}\"; "
            "END IF; END $$;"
        )
        op.execute(sa.text(statement))
