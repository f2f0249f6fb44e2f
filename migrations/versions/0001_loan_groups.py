"""create loan group workflow tables

Revision ID: 0001_loan_groups
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "0001_loan_groups"
down_revision = None
branch_labels = None
depends_on = None


def _timestamp(name: str, *, nullable: bool = False) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=nullable)


def upgrade() -> None:
    op.create_table(
        "loan_groups",
        sa.Column("id", sa.String(length=20), primary_key=True, nullable=False),
        sa.Column("status", sa.String(length=30), nullable=False, server_default="PendingOfficer"),
        sa.Column("locked", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("notified", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("cycle", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("applicant_cooperator_id", sa.String(length=50), nullable=True),
        sa.Column("applicant_name", sa.String(length=255), nullable=True),
        sa.Column("applicant_phone", sa.String(length=50), nullable=True),
        sa.Column("applicant_email", sa.String(length=255), nullable=True),
        sa.Column("guarantor1_cooperator_id", sa.String(length=50), nullable=True),
        sa.Column("guarantor1_name", sa.String(length=255), nullable=True),
        sa.Column("guarantor1_phone", sa.String(length=50), nullable=True),
        sa.Column("guarantor1_email", sa.String(length=255), nullable=True),
        sa.Column("guarantor2_cooperator_id", sa.String(length=50), nullable=True),
        sa.Column("guarantor2_name", sa.String(length=255), nullable=True),
        sa.Column("guarantor2_phone", sa.String(length=50), nullable=True),
        sa.Column("guarantor2_email", sa.String(length=255), nullable=True),
        sa.Column("officer_name", sa.String(length=255), nullable=True),
        sa.Column("officer_id", sa.String(length=50), nullable=True),
        sa.Column("officer_email", sa.String(length=255), nullable=True),
        sa.Column("officer_phone", sa.String(length=50), nullable=True),
        sa.Column("home_address", sa.String(length=500), nullable=True),
        sa.Column("loan_amount_figures", sa.String(length=50), nullable=True),
        sa.Column("loan_amount_words", sa.String(length=255), nullable=True),
        sa.Column("repayment_period", sa.String(length=50), nullable=True),
        sa.Column("bank_name", sa.String(length=255), nullable=True),
        sa.Column("account_name", sa.String(length=255), nullable=True),
        sa.Column("account_number", sa.LargeBinary(), nullable=True),
        sa.Column("approver_name", sa.String(length=255), nullable=True),
        sa.Column("approver_id", sa.String(length=50), nullable=True),
        sa.Column("approver_email", sa.String(length=255), nullable=True),
        sa.Column("approver_phone", sa.String(length=50), nullable=True),
        sa.Column("decision", sa.String(length=50), nullable=True),
        sa.Column("comments", sa.Text(), nullable=True),
        sa.Column("applicant_balance", sa.String(length=50), nullable=True),
        sa.Column("applicant_rating", sa.String(length=50), nullable=True),
        sa.Column("guarantor1_balance", sa.String(length=50), nullable=True),
        sa.Column("guarantor1_rating", sa.String(length=50), nullable=True),
        sa.Column("guarantor2_balance", sa.String(length=50), nullable=True),
        sa.Column("guarantor2_rating", sa.String(length=50), nullable=True),
        sa.Column("applicant_link", sa.String(length=2048), nullable=True),
        sa.Column("finance_link", sa.String(length=2048), nullable=True),
        _timestamp("created_at"),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=True),
        _timestamp("updated_at"),
        sa.CheckConstraint(
            "status IN ('PendingOfficer', 'Notified', 'ApplicantSubmitted', 'FinanceReviewed', 'Expired')",
            name="ck_loan_group_status",
        ),
        sa.CheckConstraint("version >= 1", name="ck_loan_group_version_positive"),
        sa.CheckConstraint("cycle >= 1", name="ck_loan_group_cycle_positive"),
    )
    op.create_index("ix_loan_groups_status", "loan_groups", ["status"], unique=False)
    op.create_index(
        "ix_loan_groups_applicant_cooperator_id",
        "loan_groups",
        ["applicant_cooperator_id"],
        unique=False,
    )

    op.create_table(
        "participant_intents",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("group_id", sa.String(length=20), nullable=False),
        sa.Column("cooperator_id", sa.String(length=50), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=True),
        sa.Column("phone", sa.String(length=50), nullable=True),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("role", sa.String(length=20), nullable=False),
        _timestamp("created_at"),
        sa.UniqueConstraint("group_id", "cooperator_id", name="uq_participant_intent_group_cooperator"),
        sa.CheckConstraint("role IN ('Applicant', 'Guarantor')", name="ck_participant_intent_role"),
    )
    op.create_index("ix_participant_intents_group_id", "participant_intents", ["group_id"], unique=False)
    op.create_index(
        "ix_participant_intents_cooperator_id",
        "participant_intents",
        ["cooperator_id"],
        unique=False,
    )

    op.create_table(
        "archived_loan_groups",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("group_id", sa.String(length=20), nullable=False),
        sa.Column("status", sa.String(length=30), nullable=False),
        sa.Column("applicant_cooperator_id", sa.String(length=50), nullable=True),
        sa.Column("payload", sa.LargeBinary(), nullable=False),
        _timestamp("archived_at"),
    )
    op.create_index("ix_archived_loan_groups_group_id", "archived_loan_groups", ["group_id"], unique=True)
    op.create_index(
        "ix_archived_loan_groups_applicant_cooperator_id",
        "archived_loan_groups",
        ["applicant_cooperator_id"],
        unique=False,
    )

    op.create_table(
        "finance_officers",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("officer_id", sa.String(length=50), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("phone", sa.String(length=50), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _timestamp("created_at"),
        sa.UniqueConstraint("officer_id", name="uq_finance_officers_officer_id"),
    )

    op.create_table(
        "group_id_sequences",
        sa.Column("prefix", sa.String(length=10), primary_key=True, nullable=False),
        sa.Column("last_value", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        _timestamp("updated_at"),
        sa.CheckConstraint("last_value >= 0", name="ck_group_id_sequence_nonneg"),
    )

    op.create_table(
        "notification_deliveries",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("group_id", sa.String(length=20), nullable=False),
        sa.Column("cycle", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("event", sa.String(length=64), nullable=False),
        sa.Column("recipient_role", sa.String(length=32), nullable=False),
        sa.Column("recipient_address", sa.String(length=255), nullable=True),
        sa.Column("subject", sa.String(length=255), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_error", sa.Text(), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.UniqueConstraint(
            "group_id",
            "cycle",
            "event",
            "recipient_role",
            name="uq_notification_delivery_key",
        ),
        sa.CheckConstraint(
            "status IN ('SENT', 'FAILED', 'SKIPPED')",
            name="ck_notification_delivery_status",
        ),
    )
    op.create_index(
        "ix_notification_deliveries_group_id",
        "notification_deliveries",
        ["group_id"],
        unique=False,
    )

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("group_id", sa.String(length=20), nullable=True),
        sa.Column("actor", sa.String(length=255), nullable=True),
        sa.Column("action", sa.String(length=255), nullable=False),
        sa.Column("old_value", sa.JSON(), nullable=True),
        sa.Column("new_value", sa.JSON(), nullable=True),
        sa.Column("changes", sa.JSON(), nullable=True),
        sa.Column("summary", sa.Text(), nullable=True),
        _timestamp("created_at"),
    )
    op.create_index("ix_audit_logs_group_id", "audit_logs", ["group_id"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_audit_logs_group_id", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_index("ix_notification_deliveries_group_id", table_name="notification_deliveries")
    op.drop_table("notification_deliveries")
    op.drop_table("group_id_sequences")
    op.drop_table("finance_officers")
    op.drop_index("ix_archived_loan_groups_applicant_cooperator_id", table_name="archived_loan_groups")
    op.drop_index("ix_archived_loan_groups_group_id", table_name="archived_loan_groups")
    op.drop_table("archived_loan_groups")
    op.drop_index("ix_participant_intents_cooperator_id", table_name="participant_intents")
    op.drop_index("ix_participant_intents_group_id", table_name="participant_intents")
    op.drop_table("participant_intents")
    op.drop_index("ix_loan_groups_applicant_cooperator_id", table_name="loan_groups")
    op.drop_index("ix_loan_groups_status", table_name="loan_groups")
    op.drop_table("loan_groups")
