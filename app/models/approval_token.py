import uuid

from sqlalchemy import CheckConstraint, Column, ForeignKey, String, TIMESTAMP
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.sql import func

from app.db import Base


class ApprovalToken(Base):
    __tablename__ = "email_approval_tokens"

    __table_args__ = (
        CheckConstraint("approved_at IS NULL OR rejected_at IS NULL", name="ck_email_approval_tokens_single_outcome"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)

    user_id = Column(String(100), nullable=False)
    execution_id = Column(UUID(as_uuid=True), ForeignKey("automated_gift_executions.id"), nullable=False, index=True)

    token = Column(String(128), nullable=False, unique=True)

    approved_at = Column(TIMESTAMP, nullable=True)
    rejected_at = Column(TIMESTAMP, nullable=True)
    approved_via = Column(String(20), nullable=True)  # email / in_app / sms
    rejection_reason = Column(String(500), nullable=True)

    expires_at = Column(TIMESTAMP, nullable=False)
    email_sent_at = Column(TIMESTAMP, nullable=True)

    created_at = Column(TIMESTAMP, server_default=func.now())
