from .base import Base, Column, String, BigInteger, Text


class AppSetting(Base):
    __tablename__ = "app_settings"

    key = Column(String(64), primary_key=True)
    value_json = Column(Text, nullable=False, default="{}")
    updated_at = Column(BigInteger, nullable=True)
