from sqlalchemy import Column, Integer, String, DateTime, Enum as SQLEnum
from sqlalchemy.orm import relationship
from app.db.base import Base
from app.models.enums import AccountStatus
from app.utils.timestamps import utcnow


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    supabase_id = Column(String, unique=True, index=True, nullable=True)  # Supabase Auth user ID
    email = Column(String, unique=True, index=True, nullable=False)
    first_name = Column(String, nullable=True)
    last_name = Column(String, nullable=True)
    theme_preference = Column(String, nullable=False, default="system")

    # Trial window granted at sign-up; trial_ends_at >= trial_started_at
    trial_started_at = Column(DateTime, nullable=False, default=utcnow)
    trial_ends_at = Column(DateTime, nullable=True)
    subscription_status = Column(
        SQLEnum(AccountStatus, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=AccountStatus.TRIAL,
        index=True,
    )

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    subscription = relationship("Subscription", uselist=False, back_populates="user")
    deletion_schedule = relationship("UserDeletionSchedule", uselist=False, back_populates="user")

    def __repr__(self):
        return f"<User(id={self.id}, email={self.email}, status={self.subscription_status})>"
