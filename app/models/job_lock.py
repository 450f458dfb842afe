from sqlalchemy import Column, String, DateTime
from app.db.base import Base
from app.utils.timestamps import utcnow


class JobLock(Base):
    """One row per running batch job; the primary key makes the lock exclusive."""
    __tablename__ = "job_locks"

    name = Column(String, primary_key=True)
    owner = Column(String, nullable=False)
    locked_at = Column(DateTime, default=utcnow, nullable=False)
    expires_at = Column(DateTime, nullable=False)
