from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Boolean, Enum as SQLEnum
from sqlalchemy.orm import relationship
from app.db.base import Base
from app.models.enums import ProviderSubscriptionStatus
from app.utils.timestamps import utcnow


class Subscription(Base):
    """
    Local mirror of the Stripe subscription for an account.
    Written only from Stripe webhooks / checkout verification.
    """
    __tablename__ = "subscriptions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True)
    stripe_customer_id = Column(String, nullable=True, index=True)
    stripe_subscription_id = Column(String, unique=True, nullable=True)
    price_id = Column(String, nullable=True)
    status = Column(
        SQLEnum(ProviderSubscriptionStatus, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=ProviderSubscriptionStatus.INCOMPLETE,
    )
    current_period_end = Column(DateTime, nullable=True)
    cancel_at_period_end = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    user = relationship("User", back_populates="subscription")
