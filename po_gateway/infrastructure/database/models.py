"""SQLAlchemy ORM models for operations and sync sessions"""

from sqlalchemy import JSON, BigInteger, Column, DateTime, Float, Integer, String, Text
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func

Base = declarative_base()


class OperationRecord(Base):
    """Committed trade execution"""

    __tablename__ = "operation"

    id = Column(String(36), primary_key=True)
    position = Column(Integer, nullable=False, index=True)  # insertion order
    order_id = Column(Text, nullable=True, index=True)
    execution_id = Column(Text, nullable=True)
    symbol = Column(Text, nullable=False, index=True)
    side = Column(String(4), nullable=True)
    quantity = Column(Float, nullable=False)
    price = Column(Float, nullable=False)
    trade_timestamp = Column(BigInteger, nullable=False)
    source = Column(String(8), nullable=False)
    category = Column(Text, nullable=True)
    option_type = Column(Text, nullable=True)
    strike = Column(Float, nullable=True)
    expiration = Column(Text, nullable=True)
    import_timestamp = Column(BigInteger, nullable=True)
    raw = Column(JSON, nullable=True)
    sync_session_id = Column(String(64), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class SyncSessionRecord(Base):
    """Broker sync run with its terminal status"""

    __tablename__ = "sync_session"

    id = Column(String(64), primary_key=True)
    mode = Column(String(16), nullable=False)
    status = Column(String(16), nullable=False, index=True)
    start_time = Column(BigInteger, nullable=False)
    end_time = Column(BigInteger, nullable=True)
    operations_imported_count = Column(Integer, nullable=False, default=0)
    pages_fetched = Column(Integer, nullable=False, default=0)
    retry_attempts = Column(Integer, nullable=False, default=0)
    error = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
