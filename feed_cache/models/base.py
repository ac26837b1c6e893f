"""
Declarative base shared by every cache table.
"""
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass
