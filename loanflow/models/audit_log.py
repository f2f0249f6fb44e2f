import uuid

from sqlalchemy import JSON, Column, DateTime, String, Text, Uuid, func

from loanflow.db.base import Base, utcnow


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    group_id = Column(String(20), nullable=True, index=True)
    actor = Column(String(255), nullable=True)
    action = Column(String(255), nullable=False)
    old_value = Column(JSON, nullable=True)
    new_value = Column(JSON, nullable=True)
    changes = Column(JSON, nullable=True)
    summary = Column(Text, nullable=True)
    created_at = Column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), default=utcnow
    )
