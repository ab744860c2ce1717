from .base import Base, Column, String, BigInteger


class MutexToken(Base):
    __tablename__ = "mutex_tokens"

    key = Column(String(128), primary_key=True)
    owner = Column(String(64), nullable=False)
    expires_at = Column(BigInteger, nullable=False)
