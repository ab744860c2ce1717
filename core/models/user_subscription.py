from .base import Base, Column, String, Integer, BigInteger


class UserSubscription(Base):
    __tablename__ = "user_subscriptions"

    id = Column(String(64), primary_key=True, index=True)
    username = Column(String(50), index=True, nullable=False)
    email = Column(String(255), nullable=False)
    title = Column(String(255), nullable=False)
    source_key = Column(String(255), index=True, nullable=False)
    current_episodes = Column(Integer, default=0)
    notified_episodes = Column(Integer, default=0)
    last_checked = Column(BigInteger, nullable=True)
    status = Column(String(16), nullable=False, default="active")
    created_at = Column(BigInteger, nullable=False)
