from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Text, JSON
from app.db.base import Base
from app.utils.timestamps import utcnow


class Memory(Base):
    __tablename__ = "memories"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String, nullable=False)
    content = Column(Text, nullable=False, default="")
    tags = Column(JSON, nullable=False, default=list)
    emotion = Column(String, nullable=True)
    memory_metadata = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
