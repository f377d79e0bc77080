"""Initial schema: catalog, bookings, concession stock, promo codes, loyalty ledger, outbox.

Revision ID: 001
Revises: None
Create Date: 2026-10-19
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def upgrade() -> None:
    # Catalog (read-only to the booking engine)
    op.create_table(
        "screens",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("organization_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("rows", sa.Integer(), nullable=False),
        sa.Column("seats_per_row", sa.Integer(), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_screens_id", "screens", ["id"])
    op.create_index("ix_screens_organization_id", "screens", ["organization_id"])

    op.create_table(
        "seat_layouts",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("screen_id", sa.Integer(), sa.ForeignKey("screens.id"), nullable=False),
        sa.Column("row_label", sa.String(5), nullable=False),
        sa.Column("seat_number", sa.Integer(), nullable=False),
        sa.Column("seat_type", sa.String(20), nullable=False, server_default="standard"),
        sa.Column("is_available", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.UniqueConstraint("screen_id", "row_label", "seat_number", name="uq_seat_layout_position"),
        sa.CheckConstraint(
            "seat_type IN ('standard', 'vip', 'couple', 'wheelchair', 'blocked')",
            name="check_seat_layout_type",
        ),
    )
    op.create_index("ix_seat_layouts_id", "seat_layouts", ["id"])
    op.create_index("ix_seat_layouts_screen_id", "seat_layouts", ["screen_id"])

    op.create_table(
        "showtimes",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("organization_id", sa.Integer(), nullable=False),
        sa.Column("screen_id", sa.Integer(), sa.ForeignKey("screens.id"), nullable=False),
        sa.Column("movie_title", sa.String(255), nullable=False),
        sa.Column("starts_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("price", sa.Numeric(10, 2), nullable=False),
        sa.Column("vip_price", sa.Numeric(10, 2), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="scheduled"),
        *_timestamps(),
        sa.CheckConstraint("price >= 0", name="check_showtime_price_non_negative"),
        sa.CheckConstraint("status IN ('scheduled', 'cancelled')", name="check_showtime_status"),
    )
    op.create_index("ix_showtimes_id", "showtimes", ["id"])
    op.create_index("ix_showtimes_organization_id", "showtimes", ["organization_id"])
    op.create_index("ix_showtimes_org_starts_at", "showtimes", ["organization_id", "starts_at"])

    # Concession stock
    op.create_table(
        "concession_items",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("organization_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("category", sa.String(50), nullable=True),
        sa.Column("price", sa.Numeric(10, 2), nullable=False),
        sa.Column("is_available", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("track_inventory", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("stock_quantity", sa.Integer(), nullable=True),
        sa.Column("low_stock_threshold", sa.Integer(), nullable=False, server_default=sa.text("10")),
        *_timestamps(),
        sa.CheckConstraint("stock_quantity IS NULL OR stock_quantity >= 0", name="check_stock_non_negative"),
        sa.CheckConstraint("price >= 0", name="check_concession_price_non_negative"),
    )
    op.create_index("ix_concession_items_id", "concession_items", ["id"])
    op.create_index("ix_concession_items_organization_id", "concession_items", ["organization_id"])

    # Promo codes
    op.create_table(
        "promo_codes",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("organization_id", sa.Integer(), nullable=False),
        sa.Column("code", sa.String(40), nullable=False),
        sa.Column("discount_type", sa.String(20), nullable=False, server_default="percentage"),
        sa.Column("discount_value", sa.Numeric(10, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("max_uses", sa.Integer(), nullable=True),
        sa.Column("current_uses", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("min_order_value", sa.Numeric(10, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("valid_from", sa.DateTime(timezone=True), nullable=False),
        sa.Column("valid_until", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        *_timestamps(),
        sa.UniqueConstraint("organization_id", "code", name="uq_promo_codes_org_code"),
        sa.CheckConstraint("current_uses >= 0", name="check_promo_uses_non_negative"),
        # The cap holds even if a writer skips the conditional increment
        sa.CheckConstraint("max_uses IS NULL OR current_uses <= max_uses", name="check_promo_uses_within_cap"),
        sa.CheckConstraint(
            "discount_type IN ('percentage', 'fixed', 'free_ticket')",
            name="check_promo_discount_type",
        ),
    )
    op.create_index("ix_promo_codes_id", "promo_codes", ["id"])
    op.create_index("ix_promo_codes_organization_id", "promo_codes", ["organization_id"])

    # Loyalty program
    op.create_table(
        "loyalty_settings",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("organization_id", sa.Integer(), nullable=False, unique=True),
        sa.Column("is_enabled", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("points_per_currency_unit", sa.Numeric(6, 2), nullable=False, server_default=sa.text("1")),
        sa.Column("points_per_booking", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("welcome_bonus_points", sa.Integer(), nullable=False, server_default=sa.text("0")),
        *_timestamps(),
    )
    op.create_index("ix_loyalty_settings_id", "loyalty_settings", ["id"])

    op.create_table(
        "loyalty_rewards",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("organization_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("points_required", sa.Integer(), nullable=False),
        sa.Column("reward_type", sa.String(30), nullable=False),
        sa.Column("discount_value", sa.Numeric(10, 2), nullable=True),
        sa.Column("concession_item_id", sa.Integer(), sa.ForeignKey("concession_items.id"), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        *_timestamps(),
        sa.CheckConstraint("points_required > 0", name="check_reward_points_positive"),
        sa.CheckConstraint(
            "reward_type IN ('discount_percentage', 'discount_fixed', 'free_ticket', 'free_concession')",
            name="check_reward_type",
        ),
    )
    op.create_index("ix_loyalty_rewards_id", "loyalty_rewards", ["id"])
    op.create_index("ix_loyalty_rewards_organization_id", "loyalty_rewards", ["organization_id"])

    op.create_table(
        "loyalty_accounts",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("organization_id", sa.Integer(), nullable=False),
        sa.Column("customer_id", sa.Integer(), nullable=False),
        sa.Column("loyalty_points", sa.Integer(), nullable=False, server_default=sa.text("0")),
        *_timestamps(),
        sa.UniqueConstraint("organization_id", "customer_id", name="uq_loyalty_account_customer"),
        sa.CheckConstraint("loyalty_points >= 0", name="check_loyalty_points_non_negative"),
    )
    op.create_index("ix_loyalty_accounts_id", "loyalty_accounts", ["id"])

    # Bookings
    op.create_table(
        "bookings",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("organization_id", sa.Integer(), nullable=False),
        sa.Column("customer_id", sa.Integer(), nullable=True),
        sa.Column("showtime_id", sa.Integer(), sa.ForeignKey("showtimes.id"), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("channel", sa.String(20), nullable=False, server_default="online"),
        sa.Column("booking_reference", sa.String(16), nullable=False, unique=True),
        sa.Column("customer_email", sa.String(255), nullable=True),
        sa.Column("subtotal", sa.Numeric(10, 2), nullable=False),
        sa.Column("promo_discount_amount", sa.Numeric(10, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("loyalty_discount_amount", sa.Numeric(10, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("discount_amount", sa.Numeric(10, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("total_amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("promo_code_id", sa.Integer(), sa.ForeignKey("promo_codes.id"), nullable=True),
        sa.Column("loyalty_reward_id", sa.Integer(), sa.ForeignKey("loyalty_rewards.id"), nullable=True),
        sa.Column("points_earned", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("points_redeemed", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("shift_id", sa.Integer(), nullable=True),
        sa.Column("idempotency_key", sa.String(255), nullable=True),
        sa.Column("request_fingerprint", sa.String(64), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("activated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("activated_by", sa.Integer(), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancellation_reason", sa.String(255), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("organization_id", "idempotency_key", name="uq_booking_idempotency_key"),
        sa.CheckConstraint(
            "status IN ('pending', 'paid', 'confirmed', 'activated', 'cancelled', 'used', 'expired')",
            name="check_booking_status",
        ),
        sa.CheckConstraint("channel IN ('online', 'box_office')", name="check_booking_channel"),
        sa.CheckConstraint("subtotal >= 0", name="check_booking_subtotal_non_negative"),
        sa.CheckConstraint("total_amount >= 0", name="check_booking_total_non_negative"),
        sa.CheckConstraint("discount_amount <= subtotal", name="check_booking_discount_lte_subtotal"),
    )
    op.create_index("ix_bookings_id", "bookings", ["id"])
    op.create_index("ix_bookings_organization_id", "bookings", ["organization_id"])
    op.create_index("ix_bookings_customer_id", "bookings", ["customer_id"])
    op.create_index("ix_bookings_showtime_id", "bookings", ["showtime_id"])

    op.create_table(
        "booked_seats",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("booking_id", sa.Integer(), sa.ForeignKey("bookings.id"), nullable=False),
        sa.Column("showtime_id", sa.Integer(), sa.ForeignKey("showtimes.id"), nullable=False),
        sa.Column("row_label", sa.String(5), nullable=False),
        sa.Column("seat_number", sa.Integer(), nullable=False),
        sa.Column("seat_type", sa.String(20), nullable=False, server_default="standard"),
        sa.Column("price", sa.Numeric(10, 2), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_booked_seats_id", "booked_seats", ["id"])
    op.create_index("ix_booked_seats_booking_id", "booked_seats", ["booking_id"])
    # PARTIAL UNIQUE INDEX: the double-booking guarantee.
    # One active claim per (showtime, seat). Cancelled bookings flip is_active
    # to false, which drops their rows out of the index and frees the seat.
    op.create_index(
        "uq_booked_seats_active_seat",
        "booked_seats",
        ["showtime_id", "row_label", "seat_number"],
        unique=True,
        postgresql_where=sa.text("is_active"),
        sqlite_where=sa.text("is_active"),
    )

    op.create_table(
        "booking_concessions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("booking_id", sa.Integer(), sa.ForeignKey("bookings.id"), nullable=False),
        sa.Column("concession_item_id", sa.Integer(), sa.ForeignKey("concession_items.id"), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit_price", sa.Numeric(10, 2), nullable=False),
        sa.Column("line_total", sa.Numeric(10, 2), nullable=False),
        sa.CheckConstraint("quantity > 0", name="check_booking_concession_quantity_positive"),
    )
    op.create_index("ix_booking_concessions_id", "booking_concessions", ["id"])
    op.create_index("ix_booking_concessions_booking_id", "booking_concessions", ["booking_id"])

    op.create_table(
        "retired_references",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("reference", sa.String(16), nullable=False, unique=True),
        sa.Column("booking_id", sa.Integer(), sa.ForeignKey("bookings.id"), nullable=False),
        sa.Column("retired_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_retired_references_id", "retired_references", ["id"])
    op.create_index("ix_retired_references_booking_id", "retired_references", ["booking_id"])

    # Ledgers
    op.create_table(
        "inventory_history",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("organization_id", sa.Integer(), nullable=False),
        sa.Column("item_id", sa.Integer(), sa.ForeignKey("concession_items.id"), nullable=False),
        sa.Column("previous_quantity", sa.Integer(), nullable=False),
        sa.Column("new_quantity", sa.Integer(), nullable=False),
        sa.Column("change_amount", sa.Integer(), nullable=False),
        sa.Column("change_type", sa.String(20), nullable=False),
        sa.Column("booking_id", sa.Integer(), sa.ForeignKey("bookings.id"), nullable=True),
        sa.Column("created_by", sa.Integer(), nullable=True),
        sa.Column("notes", sa.String(500), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint(
            "previous_quantity + change_amount = new_quantity",
            name="check_inventory_history_arithmetic",
        ),
        sa.CheckConstraint(
            "change_type IN ('initial', 'sale', 'restock', 'adjustment')",
            name="check_inventory_history_change_type",
        ),
    )
    op.create_index("ix_inventory_history_id", "inventory_history", ["id"])
    op.create_index("ix_inventory_history_item_created", "inventory_history", ["item_id", "created_at"])

    op.create_table(
        "loyalty_transactions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("organization_id", sa.Integer(), nullable=False),
        sa.Column("customer_id", sa.Integer(), nullable=False),
        sa.Column("points", sa.Integer(), nullable=False),
        sa.Column("transaction_type", sa.String(20), nullable=False),
        sa.Column("booking_id", sa.Integer(), sa.ForeignKey("bookings.id"), nullable=True),
        sa.Column("reward_id", sa.Integer(), sa.ForeignKey("loyalty_rewards.id"), nullable=True),
        sa.Column("description", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("points <> 0", name="check_loyalty_transaction_points_non_zero"),
        sa.CheckConstraint(
            "transaction_type IN ('earned', 'redeemed', 'welcome_bonus', 'adjustment', 'expired')",
            name="check_loyalty_transaction_type",
        ),
    )
    op.create_index("ix_loyalty_transactions_id", "loyalty_transactions", ["id"])
    op.create_index("ix_loyalty_transactions_customer", "loyalty_transactions", ["organization_id", "customer_id"])

    # Outbox
    op.create_table(
        "outbox_events",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("organization_id", sa.Integer(), nullable=False),
        sa.Column("event_type", sa.String(50), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("dispatched_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_outbox_events_id", "outbox_events", ["id"])
    op.create_index("ix_outbox_events_status_id", "outbox_events", ["status", "id"])


def downgrade() -> None:
    op.drop_table("outbox_events")
    op.drop_table("loyalty_transactions")
    op.drop_table("inventory_history")
    op.drop_table("retired_references")
    op.drop_table("booking_concessions")
    op.drop_table("booked_seats")
    op.drop_table("bookings")
    op.drop_table("loyalty_accounts")
    op.drop_table("loyalty_rewards")
    op.drop_table("loyalty_settings")
    op.drop_table("promo_codes")
    op.drop_table("concession_items")
    op.drop_table("showtimes")
    op.drop_table("seat_layouts")
    op.drop_table("screens")
