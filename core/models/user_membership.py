from .base import Base, Column, String, BigInteger, Boolean


class UserMembership(Base):
    __tablename__ = "user_memberships"

    username = Column(String(50), primary_key=True)
    membership_type = Column(String(20), nullable=True)
    start_date = Column(BigInteger, nullable=True)
    expiry_date = Column(BigInteger, nullable=True)  # 0 = 永久
    is_active = Column(Boolean, default=False)
    activated_by = Column(String(32), nullable=True)
    activated_at = Column(BigInteger, nullable=True)
