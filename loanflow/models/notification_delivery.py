import uuid

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)

from loanflow.db.base import Base, utcnow


DELIVERY_STATUSES = ("SENT", "FAILED", "SKIPPED")


class NotificationDelivery(Base):
    __tablename__ = "notification_deliveries"
    __table_args__ = (
        UniqueConstraint(
            "group_id",
            "cycle",
            "event",
            "recipient_role",
            name="uq_notification_delivery_key",
        ),
        CheckConstraint("status IN ('SENT', 'FAILED', 'SKIPPED')", name="ck_notification_delivery_status"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    group_id = Column(String(20), nullable=False, index=True)
    cycle = Column(Integer, nullable=False, default=1)
    event = Column(String(64), nullable=False)
    recipient_role = Column(String(32), nullable=False)
    recipient_address = Column(String(255), nullable=True)
    subject = Column(String(255), nullable=True)
    status = Column(String(16), nullable=False)
    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)
    created_at = Column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), default=utcnow
    )
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        default=utcnow,
        onupdate=utcnow,
    )
