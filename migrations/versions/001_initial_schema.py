"""Initial schema: availability, appointments, reminder events.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-18

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "availability_records",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("doctor_id", sa.String(length=64), nullable=False),
        sa.Column("hospital_id", sa.String(length=64), nullable=False),
        sa.Column("appointment_duration_minutes", sa.Integer(), nullable=False, server_default="30"),
        sa.Column("break_start", sa.String(length=5), nullable=True),
        sa.Column("break_end", sa.String(length=5), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("doctor_id", "hospital_id", name="uq_availability_doctor_hospital"),
    )
    op.create_index(op.f("ix_availability_records_doctor_id"), "availability_records", ["doctor_id"], unique=False)
    op.create_index(op.f("ix_availability_records_hospital_id"), "availability_records", ["hospital_id"], unique=False)

    op.create_table(
        "availability_weekly_ranges",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("record_id", sa.Integer(), nullable=False),
        sa.Column("weekday", sa.Integer(), nullable=False),
        sa.Column("start_time", sa.String(length=5), nullable=False),
        sa.Column("end_time", sa.String(length=5), nullable=False),
        sa.ForeignKeyConstraint(["record_id"], ["availability_records.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("record_id", "weekday", name="uq_weekly_range_weekday"),
    )
    op.create_index(
        op.f("ix_availability_weekly_ranges_record_id"), "availability_weekly_ranges", ["record_id"], unique=False
    )

    op.create_table(
        "availability_specific_dates",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("record_id", sa.Integer(), nullable=False),
        sa.Column("on_date", sa.Date(), nullable=False),
        sa.Column("is_available", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("start_time", sa.String(length=5), nullable=True),
        sa.Column("end_time", sa.String(length=5), nullable=True),
        sa.ForeignKeyConstraint(["record_id"], ["availability_records.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("record_id", "on_date", name="uq_specific_date_day"),
    )
    op.create_index(
        op.f("ix_availability_specific_dates_record_id"), "availability_specific_dates", ["record_id"], unique=False
    )

    op.create_table(
        "availability_exceptions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("record_id", sa.Integer(), nullable=False),
        sa.Column("on_date", sa.Date(), nullable=False),
        sa.Column("is_available", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("reason", sa.String(), nullable=True),
        sa.ForeignKeyConstraint(["record_id"], ["availability_records.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("record_id", "on_date", name="uq_exception_day"),
    )
    op.create_index(
        op.f("ix_availability_exceptions_record_id"), "availability_exceptions", ["record_id"], unique=False
    )

    op.create_table(
        "appointments",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("patient_id", sa.String(length=64), nullable=False),
        sa.Column("doctor_id", sa.String(length=64), nullable=False),
        sa.Column("hospital_id", sa.String(length=64), nullable=False),
        sa.Column("slot_date", sa.Date(), nullable=False),
        sa.Column("slot_time", sa.String(length=5), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="pending"),
        sa.Column("appointment_type", sa.String(length=32), nullable=False, server_default="consultation"),
        sa.Column("reason", sa.String(), nullable=True),
        sa.Column("notes", sa.String(), nullable=True),
        sa.Column("contact_email", sa.String(), nullable=True),
        sa.Column("contact_phone", sa.String(), nullable=True),
        sa.Column("remind_email", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("remind_sms", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("remind_whatsapp", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("reminder_intervals", sa.JSON(), nullable=False),
        sa.Column("cancelled_by", sa.String(), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_appointments_patient_id"), "appointments", ["patient_id"], unique=False)
    op.create_index(op.f("ix_appointments_doctor_id"), "appointments", ["doctor_id"], unique=False)
    op.create_index(op.f("ix_appointments_hospital_id"), "appointments", ["hospital_id"], unique=False)
    op.create_index(op.f("ix_appointments_slot_date"), "appointments", ["slot_date"], unique=False)
    op.create_index(op.f("ix_appointments_status"), "appointments", ["status"], unique=False)
    # One active booking per slot; cancelled rows release it
    op.create_index(
        "uq_appointments_active_slot",
        "appointments",
        ["doctor_id", "hospital_id", "slot_date", "slot_time"],
        unique=True,
        postgresql_where=sa.text("status <> 'cancelled'"),
        sqlite_where=sa.text("status <> 'cancelled'"),
    )

    op.create_table(
        "reminder_events",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("appointment_id", sa.Integer(), nullable=False),
        sa.Column("channel", sa.String(length=16), nullable=False),
        sa.Column("offset_hours", sa.Integer(), nullable=False),
        sa.Column("scheduled_for", sa.DateTime(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="pending"),
        sa.Column("message", sa.String(), nullable=False),
        sa.Column("sent_at", sa.DateTime(), nullable=True),
        sa.Column("error", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["appointment_id"], ["appointments.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("appointment_id", "channel", "offset_hours", name="uq_reminder_channel_offset"),
    )
    op.create_index(op.f("ix_reminder_events_appointment_id"), "reminder_events", ["appointment_id"], unique=False)
    op.create_index(
        "ix_reminder_events_status_scheduled_for", "reminder_events", ["status", "scheduled_for"], unique=False
    )


def downgrade() -> None:
    op.drop_index("ix_reminder_events_status_scheduled_for", table_name="reminder_events")
    op.drop_index(op.f("ix_reminder_events_appointment_id"), table_name="reminder_events")
    op.drop_table("reminder_events")
    op.drop_index("uq_appointments_active_slot", table_name="appointments")
    op.drop_index(op.f("ix_appointments_status"), table_name="appointments")
    op.drop_index(op.f("ix_appointments_slot_date"), table_name="appointments")
    op.drop_index(op.f("ix_appointments_hospital_id"), table_name="appointments")
    op.drop_index(op.f("ix_appointments_doctor_id"), table_name="appointments")
    op.drop_index(op.f("ix_appointments_patient_id"), table_name="appointments")
    op.drop_table("appointments")
    op.drop_index(op.f("ix_availability_exceptions_record_id"), table_name="availability_exceptions")
    op.drop_table("availability_exceptions")
    op.drop_index(op.f("ix_availability_specific_dates_record_id"), table_name="availability_specific_dates")
    op.drop_table("availability_specific_dates")
    op.drop_index(op.f("ix_availability_weekly_ranges_record_id"), table_name="availability_weekly_ranges")
    op.drop_table("availability_weekly_ranges")
    op.drop_index(op.f("ix_availability_records_hospital_id"), table_name="availability_records")
    op.drop_index(op.f("ix_availability_records_doctor_id"), table_name="availability_records")
    op.drop_table("availability_records")
