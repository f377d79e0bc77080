"""
Transactional outbox for notification events.

Rows are written inside the booking transaction and only become visible
(and dispatchable) once it commits.
"""

from sqlalchemy import JSON, Column, DateTime, Index, Integer, String, Text, func

from boxoffice.db.base import Base


class OutboxEvent(Base):
    __tablename__ = "outbox_events"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, nullable=False)
    event_type = Column(String(50), nullable=False)  # booking_confirmed, booking_cancelled, low_stock
    payload = Column(JSON, nullable=False)
    status = Column(String(20), nullable=False, default="pending")  # pending, dispatched, failed
    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    dispatched_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_outbox_events_status_id", "status", "id"),
    )
