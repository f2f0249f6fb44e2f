import uuid

from sqlalchemy import CheckConstraint, Column, DateTime, String, UniqueConstraint, Uuid, func

from loanflow.db.base import Base, utcnow


class ParticipantIntent(Base):
    __tablename__ = "participant_intents"
    __table_args__ = (
        UniqueConstraint("group_id", "cooperator_id", name="uq_participant_intent_group_cooperator"),
        CheckConstraint("role IN ('Applicant', 'Guarantor')", name="ck_participant_intent_role"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    # No foreign key: intent rows outlive the live group once it is archived.
    group_id = Column(String(20), nullable=False, index=True)
    cooperator_id = Column(String(50), nullable=False, index=True)
    name = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)
    email = Column(String(255), nullable=True)
    role = Column(String(20), nullable=False)
    created_at = Column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), default=utcnow
    )
