from sqlalchemy import Column, Integer, String, DateTime, Text, create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from datetime import datetime, timezone
import config

Base = declarative_base()

# Ledger statuses
STATUS_TAGGED = 'tagged'
STATUS_NOT_FOUND = 'not_found'
STATUS_ERROR = 'error'
# unresolved entry whose address the source no longer flags
STATUS_CLEARED = 'cleared'


def utcnow():
    """Naive UTC now (SQLite DateTime columns drop tzinfo)"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class State(Base):
    """Named cursor values (watermarks)"""
    __tablename__ = 'state'

    key = Column(String(255), primary_key=True)
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class ProcessedOrder(Base):
    """One row per source order ever detected with an address issue"""
    __tablename__ = 'processed'

    id = Column(Integer, primary_key=True)

    # External IDs
    source_order_id = Column(String(255), nullable=False, unique=True)
    destination_order_id = Column(String(255))

    # Order info
    business_number = Column(String(255))
    source_order_name = Column(String(255))

    # Status: 'tagged' | 'not_found' | 'error'
    status = Column(String(50), nullable=False, default=STATUS_TAGGED)
    note = Column(Text)

    # Timestamps
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, index=True)

    def to_dict(self) -> dict:
        return {
            'source_order_id': self.source_order_id,
            'source_order_name': self.source_order_name,
            'business_number': self.business_number,
            'destination_order_id': self.destination_order_id,
            'status': self.status,
            'note': self.note,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }


# Database setup
engine = create_engine(config.DATABASE_URL, echo=False)
SessionLocal = sessionmaker(bind=engine, expire_on_commit=False)


def init_db(bind=None):
    """Create all tables"""
    Base.metadata.create_all(bind or engine)


def get_db():
    """Get database session"""
    return SessionLocal()
