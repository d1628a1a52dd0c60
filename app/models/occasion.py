import uuid

from sqlalchemy import Column, Date, Index, String, TIMESTAMP
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.sql import func

from app.db import Base


class Occasion(Base):
    __tablename__ = "occasions"

    __table_args__ = (Index("ix_occasions_user_date_type", "user_id", "date_type"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)

    user_id = Column(String(100), nullable=False)

    # resolved connection, or an invited recipient that has not signed up yet
    recipient_id = Column(String(100), nullable=True)
    recipient_email = Column(String(255), nullable=True)
    recipient_name = Column(String(200), nullable=True)

    date_type = Column(String(30), nullable=False)  # birthday / anniversary / wedding / graduation / custom
    title = Column(String(200), nullable=True)
    date = Column(Date, nullable=False)
    recurring = Column(String(10), nullable=False, default="yearly")  # yearly / none

    created_at = Column(TIMESTAMP, server_default=func.now())
    updated_at = Column(TIMESTAMP, server_default=func.now(), onupdate=func.now())
