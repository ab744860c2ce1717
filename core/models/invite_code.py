from .base import Base, Column, String, BigInteger, Text


class InviteCode(Base):
    __tablename__ = "invite_codes"

    code = Column(String(32), primary_key=True, index=True)
    membership_type = Column(String(20), index=True, nullable=False)
    status = Column(String(20), index=True, nullable=False, default="unused")
    created_at = Column(BigInteger, nullable=False)
    expires_at = Column(BigInteger, nullable=False, default=0)  # 0 = 永不过期
    used_at = Column(BigInteger, nullable=True)
    used_by = Column(String(64), nullable=True)
    created_by = Column(String(50), nullable=False, default="system")
    note = Column(Text, nullable=True)
    order_id = Column(String(64), index=True, nullable=True)
