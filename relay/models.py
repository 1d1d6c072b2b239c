from sqlalchemy import BigInteger, Column, DateTime, ForeignKey, Integer, Numeric, String
from sqlalchemy.sql import func

from relay.database import Base


class User(Base):
    __tablename__ = "users"

    # Chat id of the user
    user_id = Column(BigInteger, primary_key=True, autoincrement=False)
    username = Column(String)
    first_name = Column(String)
    last_name = Column(String)
    subscription_type = Column(String, nullable=False, default="free")
    # Unix seconds
    subscription_expires = Column(BigInteger)
    checks_remaining = Column(Integer, nullable=False, default=0)
    total_checks = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    last_active = Column(DateTime(timezone=True), server_default=func.now())


class Transaction(Base):
    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(BigInteger, ForeignKey("users.user_id"), index=True)
    amount = Column(Numeric(12, 2))
    currency = Column(String)
    package = Column(String)
    payment_method = Column(String)
    status = Column(String, default="pending")
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class CheckRecord(Base):
    """One row per finished job; never updated."""

    __tablename__ = "checks_history"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(BigInteger, ForeignKey("users.user_id"), index=True)
    file_name = Column(String)
    file_size = Column(BigInteger)
    status = Column(String)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
