from sqlalchemy import Column, String, Integer, BigInteger, Boolean, Numeric, Text
from sqlalchemy.orm import declarative_base

Base = declarative_base()

__all__ = [
    "Base",
    "Column",
    "String",
    "Integer",
    "BigInteger",
    "Boolean",
    "Numeric",
    "Text",
]
