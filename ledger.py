"""
Ledger store - watermark cursor plus the idempotency table of processed orders
"""
import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence

from sqlalchemy import func

from models import State, ProcessedOrder, SessionLocal, utcnow

logger = logging.getLogger(__name__)

WATERMARK_KEY = 'last_source_poll_iso'


def format_timestamp(value: datetime) -> str:
    """UTC ISO-8601 with a Z suffix, truncated to whole seconds"""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc).replace(microsecond=0, tzinfo=None)
    return value.isoformat() + 'Z'


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 string into an aware UTC datetime"""
    parsed = datetime.fromisoformat(value.strip().replace('Z', '+00:00'))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


class LedgerStore:
    """Owns the watermark and the processed-order ledger.

    Every call opens its own session and commits before returning, so an
    outcome is durable as soon as ``record_outcome`` returns.
    """

    def __init__(self, session_factory=None, watermark_key: str = WATERMARK_KEY):
        self.session_factory = session_factory or SessionLocal
        self.watermark_key = watermark_key

    # Watermark
    def get_watermark(self) -> Optional[datetime]:
        """Last recorded cursor, or None on first run"""
        db = self.session_factory()
        try:
            row = db.get(State, self.watermark_key)
            return parse_timestamp(row.value) if row else None
        finally:
            db.close()

    def get_watermark_iso(self) -> Optional[str]:
        db = self.session_factory()
        try:
            row = db.get(State, self.watermark_key)
            return row.value if row else None
        finally:
            db.close()

    def set_watermark(self, value: datetime) -> bool:
        """Persist the cursor. Refuses to move it backward; returns False then."""
        new_value = format_timestamp(value)

        db = self.session_factory()
        try:
            row = db.get(State, self.watermark_key)
            if row is not None and parse_timestamp(row.value) > parse_timestamp(new_value):
                logger.warning("Refusing to move watermark backward (%s -> %s)", row.value, new_value)
                return False

            if row is None:
                row = State(key=self.watermark_key, value=new_value)
                db.add(row)
            else:
                row.value = new_value
                row.updated_at = utcnow()
            db.commit()
            return True
        finally:
            db.close()

    def reset_watermark(self):
        """Forget the cursor so the next pass uses the first-run lookback"""
        db = self.session_factory()
        try:
            db.query(State).filter(State.key == self.watermark_key).delete()
            db.commit()
        finally:
            db.close()

    # Ledger
    def is_processed(self, source_order_id: str) -> bool:
        db = self.session_factory()
        try:
            return db.query(ProcessedOrder.id).filter(
                ProcessedOrder.source_order_id == str(source_order_id)
            ).first() is not None
        finally:
            db.close()

    def get_entry(self, source_order_id: str) -> Optional[ProcessedOrder]:
        db = self.session_factory()
        try:
            return db.query(ProcessedOrder).filter(
                ProcessedOrder.source_order_id == str(source_order_id)
            ).first()
        finally:
            db.close()

    def record_outcome(
        self,
        source_order_id: str,
        status: str,
        business_number: Optional[str] = None,
        source_order_name: Optional[str] = None,
        destination_order_id: Optional[str] = None,
        note: Optional[str] = None,
    ) -> ProcessedOrder:
        """Insert or update the entry for a source order (created_at is kept on update)"""
        db = self.session_factory()
        try:
            entry = db.query(ProcessedOrder).filter(
                ProcessedOrder.source_order_id == str(source_order_id)
            ).first()

            now = utcnow()
            if entry is None:
                entry = ProcessedOrder(source_order_id=str(source_order_id), created_at=now)
                db.add(entry)

            if business_number is not None:
                entry.business_number = business_number
            if source_order_name is not None:
                entry.source_order_name = source_order_name
            entry.destination_order_id = str(destination_order_id) if destination_order_id is not None else None
            entry.status = status
            entry.note = note
            entry.updated_at = now

            db.commit()
            return entry
        finally:
            db.close()

    def stats(self) -> Dict[str, int]:
        """Count of entries per status"""
        db = self.session_factory()
        try:
            rows = db.query(ProcessedOrder.status, func.count(ProcessedOrder.id)).group_by(
                ProcessedOrder.status
            ).all()
            return {status: count for status, count in rows}
        finally:
            db.close()

    def recent(self, limit: int = 50) -> List[ProcessedOrder]:
        """Most recently updated entries, newest first"""
        db = self.session_factory()
        try:
            return db.query(ProcessedOrder).order_by(
                ProcessedOrder.updated_at.desc(), ProcessedOrder.id.desc()
            ).limit(limit).all()
        finally:
            db.close()

    def retry_candidates(self, created_after: datetime, statuses: Sequence[str]) -> List[ProcessedOrder]:
        """Unresolved entries first seen after ``created_after``, oldest first"""
        if created_after.tzinfo is not None:
            created_after = created_after.astimezone(timezone.utc).replace(tzinfo=None)

        db = self.session_factory()
        try:
            return db.query(ProcessedOrder).filter(
                ProcessedOrder.status.in_(list(statuses)),
                ProcessedOrder.created_at >= created_after,
            ).order_by(ProcessedOrder.created_at, ProcessedOrder.id).all()
        finally:
            db.close()
