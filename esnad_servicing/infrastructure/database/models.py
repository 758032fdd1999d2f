"""SQLAlchemy ORM models for finances, collection goals, notices and settings.

Heterogeneous payloads live in the JSON ``data_in`` / ``data_out`` columns and
are validated by ``payloads.py`` when read or written.
"""

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Column,
    Date,
    DateTime,
    Index,
    Integer,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func

Base = declarative_base()


class FinanceRecord(Base):
    """Installment of a deal's payment schedule"""

    __tablename__ = "finances"

    faid = Column(Text, primary_key=True)
    deal_aid = Column(Text, nullable=False, index=True)
    client_aid = Column(Text, nullable=True)
    payment_number = Column(Integer, nullable=False)
    payment_date = Column(Date, nullable=False)
    total_amount = Column(BigInteger, nullable=False)
    status_name = Column(Text, nullable=False, default="PENDING", index=True)
    version = Column(Integer, nullable=False, default=1)
    data_in = Column(JSON, nullable=False)
    data_out = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (UniqueConstraint("deal_aid", "payment_number", name="uq_finance_payment_number"),)


class GoalRecord(Base):
    """Task record; collection goals use type COLLECTION"""

    __tablename__ = "collection_goals"

    gaid = Column(Text, primary_key=True)
    type = Column(Text, nullable=False, default="COLLECTION", index=True)
    title = Column(Text, nullable=False)
    deal_aid = Column(Text, nullable=False, index=True)
    finance_faid = Column(Text, nullable=False, index=True)
    stage = Column(Text, nullable=False)
    is_open = Column(Boolean, nullable=False, default=True, index=True)
    version = Column(Integer, nullable=False, default=1)
    data_in = Column(JSON, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    # At most one open goal per installment
    __table_args__ = (
        Index(
            "uq_open_collection_goal",
            "deal_aid",
            "finance_faid",
            unique=True,
            postgresql_where=text("is_open"),
            sqlite_where=text("is_open"),
        ),
    )


class NoticeRecord(Base):
    """Queued notice with delivery tracking"""

    __tablename__ = "notices"

    naid = Column(Text, primary_key=True)
    title = Column(Text, nullable=False)
    type_name = Column(Text, nullable=False)
    template_key = Column(Text, nullable=False)
    related_finance_faid = Column(Text, nullable=True, index=True)
    queued_on = Column(Date, nullable=False)
    status = Column(Text, nullable=False, default="QUEUED", index=True)
    send_after = Column(DateTime(timezone=True), nullable=True)
    data_in = Column(JSON, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint(
            "related_finance_faid", "type_name", "template_key", "queued_on", name="uq_notice_idempotency"
        ),
    )


class SettingRecord(Base):
    """Typed business setting; json settings keep their payload in data_in"""

    __tablename__ = "settings"

    attribute = Column(Text, primary_key=True)
    value = Column(Text, nullable=True)
    type = Column(Text, nullable=False)
    order = Column(Integer, nullable=False, default=0)
    data_in = Column(JSON, nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())
