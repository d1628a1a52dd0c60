import uuid

from sqlalchemy import Column, Date, Float, ForeignKey, Index, JSON, Numeric, String, TIMESTAMP, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.sql import func

from app.db import Base
from app.models.enums import ExecutionStatus, TERMINAL_EXECUTION_STATUSES, status_enum


_TERMINAL_SQL = ", ".join(f"'{s.value}'" for s in sorted(TERMINAL_EXECUTION_STATUSES, key=lambda s: s.value))
_NON_TERMINAL_WHERE = text(f"status NOT IN ({_TERMINAL_SQL})")


class AutoGiftExecution(Base):
    __tablename__ = "automated_gift_executions"

    __table_args__ = (
        # at most one in-flight execution per rule occurrence
        Index(
            "uq_automated_gift_executions_active_occurrence",
            "rule_id",
            "occasion_date",
            unique=True,
            postgresql_where=_NON_TERMINAL_WHERE,
            sqlite_where=_NON_TERMINAL_WHERE,
        ),
        Index("ix_automated_gift_executions_status", "status"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)

    user_id = Column(String(100), nullable=False, index=True)
    rule_id = Column(UUID(as_uuid=True), ForeignKey("auto_gifting_rules.id"), nullable=False)
    occasion_id = Column(UUID(as_uuid=True), ForeignKey("occasions.id", ondelete="SET NULL"), nullable=True)

    occasion_date = Column(Date, nullable=False)
    execution_date = Column(Date, nullable=False)

    status = Column(status_enum(ExecutionStatus, "execution_status"), nullable=False, default=ExecutionStatus.PENDING_SELECTION)

    # snapshot; must survive later edits of the rule
    selected_products = Column(JSON, nullable=True)
    total_amount = Column(Numeric(10, 2), nullable=True)
    gift_message = Column(String(500), nullable=True)

    ai_agent = Column(String(50), nullable=True)
    confidence_score = Column(Float, nullable=True)
    discovery_method = Column(String(30), nullable=True)

    order_id = Column(UUID(as_uuid=True), nullable=True)
    error_message = Column(String(2000), nullable=True)

    claimed_at = Column(TIMESTAMP, nullable=True)
    claimed_by = Column(String(100), nullable=True)

    created_at = Column(TIMESTAMP, server_default=func.now())
    updated_at = Column(TIMESTAMP, server_default=func.now(), onupdate=func.now())
