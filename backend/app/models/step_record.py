from datetime import datetime
from sqlalchemy import Column, String, Boolean, DateTime, Index
from sqlalchemy.dialects.postgresql import UUID
import uuid

from app.core.database import Base


class StepRecord(Base):
    __tablename__ = "step_infos"

    step_id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    room_id = Column(String(64), nullable=False, index=True)
    step_phase = Column(String(32), nullable=False)
    active_username = Column(String(100), nullable=True)
    other_username = Column(String(100), nullable=True)
    card_action = Column(String(64), nullable=True)
    skip_showing = Column(Boolean, nullable=True)
    show_all = Column(Boolean, nullable=True)
    processed_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index("ix_step_infos_room_processed", "room_id", "processed_at"),
    )

    def __repr__(self):
        return f"<StepRecord(room_id={self.room_id}, phase={self.step_phase}, action={self.card_action})>"
