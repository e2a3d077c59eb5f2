"""User database model."""

from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime
from tokenhub.database.database import Base


class User(Base):
    """Account that owns tokens. ``group`` is the user's primary group."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String, nullable=False, unique=True)
    group = Column(String, nullable=False, default="default")
    status = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, default=datetime.utcnow)
