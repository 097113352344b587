from datetime import datetime

from sqlalchemy import Column, Integer, BigInteger, String, DateTime
from server.db.base_class import Base


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(64), unique=True, index=True, nullable=False)
    email = Column(String(255), unique=True, nullable=True)
    # student | instructor | admin
    role = Column(String(16), default="student", nullable=False)
    api_token = Column(String(64), unique=True, index=True, nullable=True)
    # Optional chat for payment notifications
    telegram_id = Column(BigInteger, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
