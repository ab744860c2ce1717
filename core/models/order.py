from .base import Base, Column, String, BigInteger, Boolean, Numeric, Text


class Order(Base):
    __tablename__ = "orders"

    order_id = Column(String(64), primary_key=True, index=True)
    user_id = Column(String(50), index=True, nullable=True)
    email = Column(String(255), index=True, nullable=False)
    membership_type = Column(String(20), index=True, nullable=False)
    amount = Column(Numeric(10, 2), nullable=False, default=0)
    payment_method = Column(String(32), nullable=False, default="xorpay_wechat")
    status = Column(String(20), index=True, nullable=False, default="pending")
    created_at = Column(BigInteger, index=True, nullable=False)
    paid_at = Column(BigInteger, nullable=True)
    completed_at = Column(BigInteger, nullable=True)
    invite_code = Column(String(32), nullable=True)
    transaction_id = Column(String(128), nullable=True)
    notify_data = Column(Text, nullable=True)
    email_sent = Column(Boolean, nullable=True)
    refund_status = Column(String(20), nullable=True)
    refund_at = Column(BigInteger, nullable=True)
    refund_reason = Column(String(200), nullable=True)
    refund_no = Column(String(128), nullable=True)
    refund_fee = Column(String(32), nullable=True)
