"""Initial automation engine tables

Revision ID: 20260105_000001
Revises:
Create Date: 2026-01-05 09:00:00

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20260105_000001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps(updated: bool = True) -> list:
    columns = [sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now())]
    if updated:
        columns.append(sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()))
    return columns


def upgrade() -> None:
    op.create_table(
        "customer",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(updated=False),
    )

    op.create_table(
        "driver",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("first_name", sa.String(100), nullable=False),
        sa.Column("last_name", sa.String(100), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="ACTIVE"),
        *_timestamps(updated=False),
    )

    op.create_table(
        "driver_rate_profile",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("waiting_free_hours", sa.Numeric(4, 2), nullable=False, server_default="2"),
        sa.Column("waiting_rate_per_hour", sa.Numeric(10, 2), nullable=False, server_default="25.00"),
    )

    op.create_table(
        "shipment",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("customer_id", sa.String(36), sa.ForeignKey("customer.id"), nullable=True, index=True),
        sa.Column("type", sa.String(10), nullable=False, server_default="IMPORT"),
        sa.Column("status", sa.String(20), nullable=False, server_default="PENDING", index=True),
        sa.Column("booking_number", sa.String(50), nullable=True),
        sa.Column("steamship_line", sa.String(10), nullable=True),
        sa.Column("chassis_pool", sa.String(20), nullable=True),
        sa.Column("total_containers", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("completed_containers", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_orders", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("completed_orders", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
    )

    op.create_table(
        "trip",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("trip_number", sa.String(50), nullable=False, index=True),
        sa.Column("driver_id", sa.String(36), sa.ForeignKey("driver.id"), nullable=True, index=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="PLANNED", index=True),
        sa.Column("revenue", sa.Numeric(12, 2), nullable=False, server_default="0.00"),
        sa.Column("cost", sa.Numeric(12, 2), nullable=False, server_default="0.00"),
        sa.Column("total_miles", sa.Numeric(10, 2), nullable=False, server_default="0.00"),
        sa.Column("chassis_number", sa.String(20), nullable=True),
        sa.Column("chassis_pool", sa.String(20), nullable=True),
        sa.Column("actual_start_time", sa.DateTime(), nullable=True),
        sa.Column("actual_end_time", sa.DateTime(), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        "trip_stop",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("trip_id", sa.String(36), sa.ForeignKey("trip.id"), nullable=False, index=True),
        sa.Column("sequence", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("stop_type", sa.String(20), nullable=True),
        sa.Column("detention_minutes", sa.Integer(), nullable=False, server_default="0"),
    )

    op.create_table(
        "container",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("shipment_id", sa.String(36), sa.ForeignKey("shipment.id"), nullable=True, index=True),
        sa.Column("container_number", sa.String(15), nullable=False, index=True),
        sa.Column("size", sa.String(5), nullable=False, server_default="40"),
        sa.Column("is_hazmat", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_overweight", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_reefer", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("weight_lbs", sa.Integer(), nullable=True),
        sa.Column("lifecycle_status", sa.String(20), nullable=False, server_default="BOOKED", index=True),
        sa.Column("gate_out_at", sa.DateTime(), nullable=True),
        sa.Column("gate_in_at", sa.DateTime(), nullable=True),
        sa.Column("free_time_expires_at", sa.DateTime(), nullable=True),
        sa.Column("demurrage_status", sa.String(20), nullable=True),
        sa.Column("estimated_charge", sa.Numeric(12, 2), nullable=False, server_default="0.00"),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        *_timestamps(),
    )
    op.create_index("ix_container_open_accrual", "container", ["gate_out_at", "gate_in_at"])

    op.create_table(
        "orders",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("order_number", sa.String(50), nullable=False, index=True),
        sa.Column("shipment_id", sa.String(36), sa.ForeignKey("shipment.id"), nullable=True, index=True),
        sa.Column("container_id", sa.String(36), sa.ForeignKey("container.id"), nullable=True, index=True),
        sa.Column("trip_id", sa.String(36), sa.ForeignKey("trip.id"), nullable=True, index=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="PENDING", index=True),
        sa.Column("move_type", sa.String(30), nullable=True),
        sa.Column("total_charges", sa.Numeric(12, 2), nullable=False, server_default="0.00"),
        sa.Column("deleted_at", sa.DateTime(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_orders_container_status", "orders", ["container_id", "status"])

    op.create_table(
        "invoice",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("invoice_number", sa.String(30), nullable=False, unique=True),
        sa.Column("customer_id", sa.String(36), sa.ForeignKey("customer.id"), nullable=False, index=True),
        sa.Column("shipment_id", sa.String(36), sa.ForeignKey("shipment.id"), nullable=True),
        sa.Column("order_id", sa.String(36), sa.ForeignKey("orders.id"), nullable=True, index=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="DRAFT"),
        sa.Column("invoice_date", sa.Date(), nullable=False),
        sa.Column("due_date", sa.Date(), nullable=False),
        sa.Column("subtotal", sa.Numeric(12, 2), nullable=False, server_default="0.00"),
        sa.Column("total_amount", sa.Numeric(12, 2), nullable=False, server_default="0.00"),
        sa.Column("amount_paid", sa.Numeric(12, 2), nullable=False, server_default="0.00"),
        sa.Column("balance_due", sa.Numeric(12, 2), nullable=False, server_default="0.00"),
        *_timestamps(),
    )

    op.create_table(
        "invoice_line_item",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("invoice_id", sa.String(36), sa.ForeignKey("invoice.id"), nullable=False, index=True),
        sa.Column("order_id", sa.String(36), sa.ForeignKey("orders.id"), nullable=True, index=True),
        sa.Column("reference_number", sa.String(50), nullable=True, index=True),
        sa.Column("charge_type", sa.String(30), nullable=False),
        sa.Column("description", sa.String(255), nullable=False),
        sa.Column("container_number", sa.String(15), nullable=True),
        sa.Column("quantity", sa.Numeric(10, 2), nullable=False, server_default="1"),
        sa.Column("unit_rate", sa.Numeric(12, 2), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("idempotency_key", sa.String(80), nullable=False, unique=True),
        *_timestamps(updated=False),
    )

    op.create_table(
        "charge_line",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("order_id", sa.String(36), sa.ForeignKey("orders.id"), nullable=False, index=True),
        sa.Column("container_id", sa.String(36), sa.ForeignKey("container.id"), nullable=True),
        sa.Column("charge_type", sa.String(30), nullable=False),
        sa.Column("description", sa.String(255), nullable=False),
        sa.Column("quantity", sa.Numeric(10, 2), nullable=False, server_default="1"),
        sa.Column("unit_rate", sa.Numeric(12, 2), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("billable_to", sa.String(20), nullable=False, server_default="CUSTOMER"),
        sa.Column("auto_calculated", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("dedupe_key", sa.String(80), nullable=False, unique=True),
        *_timestamps(updated=False),
    )

    op.create_table(
        "container_charge",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("container_id", sa.String(36), sa.ForeignKey("container.id"), nullable=False, index=True),
        sa.Column("shipment_id", sa.String(36), sa.ForeignKey("shipment.id"), nullable=True),
        sa.Column("charge_type", sa.String(30), nullable=False, server_default="DEMURRAGE"),
        sa.Column("free_time_start", sa.DateTime(), nullable=False),
        sa.Column("free_time_end", sa.DateTime(), nullable=False),
        sa.Column("actual_return", sa.DateTime(), nullable=True),
        sa.Column("free_days_allowed", sa.Integer(), nullable=False),
        sa.Column("days_used", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("days_over", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("daily_rate", sa.Numeric(10, 2), nullable=False),
        sa.Column("total_charge", sa.Numeric(12, 2), nullable=False, server_default="0.00"),
        sa.Column("status", sa.String(20), nullable=False, server_default="ACCRUING"),
        sa.Column("billed_invoice_id", sa.String(36), sa.ForeignKey("invoice.id"), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("container_id", "charge_type", name="uq_container_charge_type"),
    )

    op.create_table(
        "chassis_pool",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("pool_code", sa.String(20), nullable=False, unique=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("free_days", sa.Integer(), nullable=False, server_default="4"),
        sa.Column("daily_rate", sa.Numeric(10, 2), nullable=False, server_default="30.00"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
    )

    op.create_table(
        "chassis_usage",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("chassis_number", sa.String(20), nullable=False, index=True),
        sa.Column("pool_code", sa.String(20), nullable=False),
        sa.Column("container_id", sa.String(36), sa.ForeignKey("container.id"), nullable=True, index=True),
        sa.Column("trip_id", sa.String(36), sa.ForeignKey("trip.id"), nullable=True),
        sa.Column("pickup_date", sa.DateTime(), nullable=False),
        sa.Column("return_date", sa.DateTime(), nullable=True),
        sa.Column("free_days", sa.Integer(), nullable=False),
        sa.Column("daily_rate", sa.Numeric(10, 2), nullable=False),
        sa.Column("days_out", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("billable_days", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("per_diem_amount", sa.Numeric(12, 2), nullable=False, server_default="0.00"),
        sa.Column("status", sa.String(20), nullable=False, server_default="OUT"),
        sa.Column("billed_to_customer", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(updated=False),
    )
    op.create_index("ix_chassis_usage_chassis_status", "chassis_usage", ["chassis_number", "status"])

    op.create_table(
        "driver_settlement",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("settlement_number", sa.String(30), nullable=False, unique=True),
        sa.Column("driver_id", sa.String(36), sa.ForeignKey("driver.id"), nullable=False, index=True),
        sa.Column("period_start", sa.Date(), nullable=False),
        sa.Column("period_end", sa.Date(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="DRAFT"),
        sa.Column("total_trips", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_miles", sa.Numeric(10, 2), nullable=False, server_default="0.00"),
        sa.Column("gross_earnings", sa.Numeric(12, 2), nullable=False, server_default="0.00"),
        sa.Column("waiting_pay", sa.Numeric(12, 2), nullable=False, server_default="0.00"),
        sa.Column("fuel_deductions", sa.Numeric(12, 2), nullable=False, server_default="0.00"),
        sa.Column("advance_deductions", sa.Numeric(12, 2), nullable=False, server_default="0.00"),
        sa.Column("other_deductions", sa.Numeric(12, 2), nullable=False, server_default="0.00"),
        sa.Column("net_pay", sa.Numeric(12, 2), nullable=False, server_default="0.00"),
        sa.Column("approved_at", sa.DateTime(), nullable=True),
        sa.Column("paid_at", sa.DateTime(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("driver_id", "period_start", name="uq_settlement_driver_period"),
    )

    op.create_table(
        "settlement_line_item",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("settlement_id", sa.String(36), sa.ForeignKey("driver_settlement.id"), nullable=False, index=True),
        sa.Column("trip_id", sa.String(36), sa.ForeignKey("trip.id"), nullable=True, index=True),
        sa.Column("trip_number", sa.String(50), nullable=True),
        sa.Column("line_type", sa.String(30), nullable=False),
        sa.Column("description", sa.String(255), nullable=False),
        sa.Column("miles", sa.Numeric(10, 2), nullable=False, server_default="0.00"),
        sa.Column("rate", sa.Numeric(12, 4), nullable=False, server_default="0"),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        *_timestamps(updated=False),
        sa.UniqueConstraint("trip_id", "line_type", name="uq_settlement_line_trip_type"),
    )

    op.create_table(
        "carrier_free_time_rule",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("carrier_code", sa.String(10), nullable=False, unique=True),
        sa.Column("import_free_days", sa.Integer(), nullable=False, server_default="5"),
        sa.Column("demurrage_rate_day1_4", sa.Numeric(10, 2), nullable=False, server_default="75.00"),
        sa.Column("demurrage_rate_day5_7", sa.Numeric(10, 2), nullable=False, server_default="100.00"),
        sa.Column("demurrage_rate_day8_plus", sa.Numeric(10, 2), nullable=False, server_default="150.00"),
        sa.Column("exclude_weekends", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("exclude_holidays", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
    )

    op.create_table(
        "holiday_calendar",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("holiday_date", sa.Date(), nullable=False, index=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("applies_to_carrier", sa.String(10), nullable=True),
    )

    op.create_table(
        "lane_rate",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("customer_id", sa.String(36), sa.ForeignKey("customer.id"), nullable=True),
        sa.Column("origin", sa.String(100), nullable=True),
        sa.Column("destination", sa.String(100), nullable=True),
        sa.Column("rate_20ft", sa.Numeric(10, 2), nullable=True),
        sa.Column("rate_40ft", sa.Numeric(10, 2), nullable=True),
        sa.Column("rate_40hc", sa.Numeric(10, 2), nullable=True),
        sa.Column("rate_45ft", sa.Numeric(10, 2), nullable=True),
        sa.Column("hazmat_surcharge", sa.Numeric(10, 2), nullable=True),
        sa.Column("overweight_surcharge", sa.Numeric(10, 2), nullable=True),
        sa.Column("reefer_surcharge", sa.Numeric(10, 2), nullable=True),
        sa.Column("effective_date", sa.Date(), nullable=True),
        sa.Column("expiry_date", sa.Date(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
    )
    op.create_index("ix_lane_rate_customer_active", "lane_rate", ["customer_id", "is_active"])

    op.create_table(
        "driver_pay_rate",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("driver_id", sa.String(36), sa.ForeignKey("driver.id"), nullable=False, index=True),
        sa.Column("profile_id", sa.String(36), sa.ForeignKey("driver_rate_profile.id"), nullable=True),
        sa.Column("pay_type", sa.String(20), nullable=False, server_default="PER_LOAD"),
        sa.Column("rate", sa.Numeric(10, 4), nullable=False),
        sa.Column("effective_date", sa.Date(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(updated=False),
    )

    op.create_table(
        "document_sequence",
        sa.Column("name", sa.String(50), primary_key=True),
        sa.Column("current_value", sa.BigInteger(), nullable=False, server_default="0"),
    )

    op.create_table(
        "outbox_event",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("event_type", sa.String(50), nullable=False),
        sa.Column("entity_type", sa.String(30), nullable=False),
        sa.Column("entity_id", sa.String(36), nullable=False),
        sa.Column("action", sa.String(30), nullable=False),
        sa.Column("new_status", sa.String(30), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("published_at", sa.DateTime(), nullable=True),
        *_timestamps(updated=False),
    )
    op.create_index("ix_outbox_unpublished", "outbox_event", ["published_at", "created_at"])


def downgrade() -> None:
    op.drop_index("ix_outbox_unpublished", table_name="outbox_event")
    op.drop_table("outbox_event")
    op.drop_table("document_sequence")
    op.drop_table("driver_pay_rate")
    op.drop_index("ix_lane_rate_customer_active", table_name="lane_rate")
    op.drop_table("lane_rate")
    op.drop_table("holiday_calendar")
    op.drop_table("carrier_free_time_rule")
    op.drop_table("settlement_line_item")
    op.drop_table("driver_settlement")
    op.drop_index("ix_chassis_usage_chassis_status", table_name="chassis_usage")
    op.drop_table("chassis_usage")
    op.drop_table("chassis_pool")
    op.drop_table("container_charge")
    op.drop_table("charge_line")
    op.drop_table("invoice_line_item")
    op.drop_table("invoice")
    op.drop_index("ix_orders_container_status", table_name="orders")
    op.drop_table("orders")
    op.drop_index("ix_container_open_accrual", table_name="container")
    op.drop_table("container")
    op.drop_table("trip_stop")
    op.drop_table("trip")
    op.drop_table("shipment")
    op.drop_table("driver_rate_profile")
    op.drop_table("driver")
    op.drop_table("customer")
