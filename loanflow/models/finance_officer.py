import uuid

from sqlalchemy import Boolean, Column, DateTime, String, Uuid, func

from loanflow.db.base import Base, utcnow


class FinanceOfficer(Base):
    __tablename__ = "finance_officers"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    officer_id = Column(String(50), nullable=False, unique=True)
    email = Column(String(255), nullable=False)
    phone = Column(String(50), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), default=utcnow
    )
