from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    func,
)

from loanflow.db.base import Base, utcnow
from loanflow.models.types import EncryptedString


GROUP_STATUSES = (
    "PendingOfficer",
    "Notified",
    "ApplicantSubmitted",
    "FinanceReviewed",
    "Expired",
)


class LoanGroup(Base):
    __tablename__ = "loan_groups"
    __table_args__ = (
        CheckConstraint(
            "status IN ('PendingOfficer', 'Notified', 'ApplicantSubmitted', 'FinanceReviewed', 'Expired')",
            name="ck_loan_group_status",
        ),
        CheckConstraint("version >= 1", name="ck_loan_group_version_positive"),
        CheckConstraint("cycle >= 1", name="ck_loan_group_cycle_positive"),
        Index("ix_loan_groups_status", "status"),
        Index("ix_loan_groups_applicant_cooperator_id", "applicant_cooperator_id"),
    )

    id = Column(String(20), primary_key=True)
    status = Column(String(30), nullable=False, default="PendingOfficer")
    locked = Column(Boolean, nullable=False, default=False)
    notified = Column(Boolean, nullable=False, default=False)
    cycle = Column(Integer, nullable=False, default=1)
    version = Column(Integer, nullable=False, default=1)

    applicant_cooperator_id = Column(String(50), nullable=True)
    applicant_name = Column(String(255), nullable=True)
    applicant_phone = Column(String(50), nullable=True)
    applicant_email = Column(String(255), nullable=True)
    guarantor1_cooperator_id = Column(String(50), nullable=True)
    guarantor1_name = Column(String(255), nullable=True)
    guarantor1_phone = Column(String(50), nullable=True)
    guarantor1_email = Column(String(255), nullable=True)
    guarantor2_cooperator_id = Column(String(50), nullable=True)
    guarantor2_name = Column(String(255), nullable=True)
    guarantor2_phone = Column(String(50), nullable=True)
    guarantor2_email = Column(String(255), nullable=True)

    officer_name = Column(String(255), nullable=True)
    officer_id = Column(String(50), nullable=True)
    officer_email = Column(String(255), nullable=True)
    officer_phone = Column(String(50), nullable=True)

    home_address = Column(String(500), nullable=True)
    loan_amount_figures = Column(String(50), nullable=True)
    loan_amount_words = Column(String(255), nullable=True)
    repayment_period = Column(String(50), nullable=True)
    bank_name = Column(String(255), nullable=True)
    account_name = Column(String(255), nullable=True)
    account_number = Column(EncryptedString(), nullable=True)

    approver_name = Column(String(255), nullable=True)
    approver_id = Column(String(50), nullable=True)
    approver_email = Column(String(255), nullable=True)
    approver_phone = Column(String(50), nullable=True)
    decision = Column(String(50), nullable=True)
    comments = Column(Text, nullable=True)
    applicant_balance = Column(String(50), nullable=True)
    applicant_rating = Column(String(50), nullable=True)
    guarantor1_balance = Column(String(50), nullable=True)
    guarantor1_rating = Column(String(50), nullable=True)
    guarantor2_balance = Column(String(50), nullable=True)
    guarantor2_rating = Column(String(50), nullable=True)

    applicant_link = Column(String(2048), nullable=True)
    finance_link = Column(String(2048), nullable=True)

    created_at = Column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), default=utcnow
    )
    submitted_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        default=utcnow,
        onupdate=utcnow,
    )

    __mapper_args__ = {"version_id_col": version}
