from sqlalchemy import CheckConstraint, Column, DateTime, Integer, String, func

from loanflow.db.base import Base, utcnow


class GroupIdSequence(Base):
    __tablename__ = "group_id_sequences"
    __table_args__ = (CheckConstraint("last_value >= 0", name="ck_group_id_sequence_nonneg"),)

    prefix = Column(String(10), primary_key=True)
    last_value = Column(Integer, nullable=False, default=0)
    version = Column(Integer, nullable=False, default=1)
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        default=utcnow,
        onupdate=utcnow,
    )

    __mapper_args__ = {"version_id_col": version}
