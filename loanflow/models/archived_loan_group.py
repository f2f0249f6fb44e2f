import uuid

from sqlalchemy import Column, DateTime, String, Uuid, func

from loanflow.db.base import Base, utcnow
from loanflow.models.types import EncryptedString


class ArchivedLoanGroup(Base):
    __tablename__ = "archived_loan_groups"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    group_id = Column(String(20), nullable=False, unique=True, index=True)
    status = Column(String(30), nullable=False)
    applicant_cooperator_id = Column(String(50), nullable=True, index=True)
    # Canonical JSON of the last live row; encrypted because it carries account details.
    payload = Column(EncryptedString(), nullable=False)
    archived_at = Column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), default=utcnow
    )
