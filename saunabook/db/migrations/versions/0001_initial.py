from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def _enum(*values: str, name: str) -> postgresql.ENUM:
    enum = postgresql.ENUM(*values, name=name, create_type=False)
    enum.create(op.get_bind(), checkfirst=True)
    return enum


def upgrade() -> None:
    op.create_table(
        "organizations",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("slug", sa.String(length=128), nullable=False, unique=True),
        sa.Column("timezone", sa.String(length=64), nullable=False, server_default="Europe/London"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    user_role = _enum("guest", "user", "admin", "superadmin", name="userrole")
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "organization_id",
            sa.Integer(),
            sa.ForeignKey("organizations.id", ondelete="CASCADE"),
            index=True,
        ),
        sa.Column("email", sa.String(length=255), nullable=False, unique=True),
        sa.Column("first_name", sa.String(length=128)),
        sa.Column("last_name", sa.String(length=128)),
        sa.Column("role", user_role, server_default="user"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    pricing_type = _enum("free", "paid", name="pricingtype")
    visibility = _enum("open", "hidden", "closed", name="visibility")
    op.create_table(
        "session_templates",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "organization_id",
            sa.Integer(),
            sa.ForeignKey("organizations.id", ondelete="CASCADE"),
            index=True,
        ),
        sa.Column("created_by", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL")),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("capacity", sa.Integer(), nullable=False),
        sa.Column("duration_minutes", sa.Integer(), nullable=False),
        sa.Column("pricing_type", pricing_type, server_default="free"),
        sa.Column("drop_in_price", sa.Integer()),
        sa.Column("visibility", visibility, server_default="open"),
        sa.Column("is_recurring", sa.Boolean(), server_default=sa.false()),
        sa.Column("recurrence_start_date", sa.Date()),
        sa.Column("recurrence_end_date", sa.Date()),
        sa.Column("one_off_date", sa.Date()),
        sa.Column("one_off_start_time", sa.Time()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint("capacity > 0", name="ck_session_template_capacity_positive"),
        sa.CheckConstraint("duration_minutes > 0", name="ck_session_template_duration_positive"),
    )

    op.create_table(
        "session_schedules",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "template_id",
            sa.Integer(),
            sa.ForeignKey("session_templates.id", ondelete="CASCADE"),
            index=True,
        ),
        sa.Column("day_of_week", sa.Integer(), nullable=False),
        sa.Column("time", sa.Time(), nullable=False),
        sa.Column("duration_minutes", sa.Integer()),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint("day_of_week >= 0 AND day_of_week <= 6", name="ck_schedule_day_of_week"),
    )

    op.create_table(
        "session_one_off_dates",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "template_id",
            sa.Integer(),
            sa.ForeignKey("session_templates.id", ondelete="CASCADE"),
            index=True,
        ),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("time", sa.Time(), nullable=False),
        sa.Column("duration_minutes", sa.Integer()),
    )

    instance_status = _enum("scheduled", "cancelled", name="instancestatus")
    op.create_table(
        "session_instances",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "template_id",
            sa.Integer(),
            sa.ForeignKey("session_templates.id", ondelete="CASCADE"),
            index=True,
        ),
        sa.Column(
            "organization_id",
            sa.Integer(),
            sa.ForeignKey("organizations.id", ondelete="CASCADE"),
            index=True,
        ),
        sa.Column("start_time", sa.DateTime(timezone=True), index=True),
        sa.Column("end_time", sa.DateTime(timezone=True)),
        sa.Column("status", instance_status, server_default="scheduled"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("template_id", "start_time", name="uq_session_instance_template_start"),
    )

    booking_status = _enum("confirmed", "completed", "cancelled", name="bookingstatus")
    payment_status = _enum(
        "not_required", "pending", "completed", "failed", "refunded", name="paymentstatus"
    )
    op.create_table(
        "bookings",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "instance_id",
            sa.Integer(),
            sa.ForeignKey("session_instances.id", ondelete="CASCADE"),
            index=True,
        ),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), index=True),
        sa.Column(
            "organization_id", sa.Integer(), sa.ForeignKey("organizations.id", ondelete="CASCADE")
        ),
        sa.Column("number_of_spots", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("status", booking_status, server_default="confirmed"),
        sa.Column("notes", sa.Text()),
        sa.Column("payment_status", payment_status, server_default="not_required"),
        sa.Column("stripe_payment_intent_id", sa.String(length=128)),
        sa.Column("amount_paid", sa.Integer()),
        sa.Column("unit_price", sa.Integer()),
        sa.Column("discount_amount", sa.Integer()),
        sa.Column("booked_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("cancelled_at", sa.DateTime(timezone=True)),
        sa.Column("cancelled_by", sa.String(length=64)),
        sa.Column("cancellation_reason", sa.String(length=255)),
        sa.CheckConstraint("number_of_spots >= 1", name="ck_booking_spots_positive"),
    )

    waitlist_status = _enum("waiting", "notified", "expired", name="waitliststatus")
    op.create_table(
        "waiting_list_entries",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "instance_id",
            sa.Integer(),
            sa.ForeignKey("session_instances.id", ondelete="CASCADE"),
            index=True,
        ),
        sa.Column(
            "template_id", sa.Integer(), sa.ForeignKey("session_templates.id", ondelete="CASCADE")
        ),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("first_name", sa.String(length=128)),
        sa.Column("requested_spots", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("status", waitlist_status, server_default="waiting"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("notified_at", sa.DateTime(timezone=True)),
        sa.CheckConstraint("requested_spots >= 1", name="ck_waiting_list_spots_positive"),
    )

    actor_type = _enum("user", "admin", "system", name="actortype")
    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("actor_type", actor_type),
        sa.Column("actor_id", sa.Integer()),
        sa.Column("action", sa.String(length=255)),
        sa.Column("payload", sa.JSON()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )


def downgrade() -> None:
    op.drop_table("audit_logs")
    op.drop_table("waiting_list_entries")
    op.drop_table("bookings")
    op.drop_table("session_instances")
    op.drop_table("session_one_off_dates")
    op.drop_table("session_schedules")
    op.drop_table("session_templates")
    op.drop_table("users")
    op.drop_table("organizations")
    for name in (
        "actortype",
        "waitliststatus",
        "paymentstatus",
        "bookingstatus",
        "instancestatus",
        "visibility",
        "pricingtype",
        "userrole",
    ):
        postgresql.ENUM(name=name).drop(op.get_bind(), checkfirst=True)
