"""
Accounts scheduled for permanent deletion after their trial lapsed unpaid.
"""
from sqlalchemy import Column, Integer, ForeignKey, DateTime
from sqlalchemy.orm import relationship
from app.db.base import Base
from app.models.enums import WarningStage
from app.utils.timestamps import utcnow


class UserDeletionSchedule(Base):
    __tablename__ = "user_deletion_schedule"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True)
    scheduled_deletion_at = Column(DateTime, nullable=False, index=True)

    # Stamped in urgency order: first <= second <= final <= scheduled_deletion_at
    first_warning_sent_at = Column(DateTime, nullable=True)
    second_warning_sent_at = Column(DateTime, nullable=True)
    final_warning_sent_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)

    user = relationship("User", back_populates="deletion_schedule")

    def warning_sent_at(self, stage: WarningStage):
        return getattr(self, stage.sent_at_field)

    def mark_warning(self, stage: WarningStage, when) -> None:
        setattr(self, stage.sent_at_field, when)

    def __repr__(self):
        return f"<UserDeletionSchedule(user_id={self.user_id}, scheduled_deletion_at={self.scheduled_deletion_at})>"
