"""
Core address issue reconciliation service
"""
import logging
import time
from dataclasses import dataclass, asdict
from datetime import datetime, timezone, timedelta
from typing import Callable, Optional, Set

from classifier import has_address_issue
from connectors import SourceConnector, DestinationConnector, SourceOrder
from connectors.base import describe_error
from errors import SourceUnavailable, DestinationLookupFailure, TagApplicationFailure
from ledger import LedgerStore, format_timestamp
from models import STATUS_TAGGED, STATUS_NOT_FOUND, STATUS_ERROR, STATUS_CLEARED

logger = logging.getLogger(__name__)

RETRY_UNRESOLVED = 'unresolved'
RETRY_NEVER = 'never'

UNRESOLVED_STATUSES = (STATUS_NOT_FOUND, STATUS_ERROR)
# re-resolved when the scan flags the order again, never swept
REOPENABLE_STATUSES = UNRESOLVED_STATUSES + (STATUS_CLEARED,)

# Dedup decisions
NEW = 'new'
ALREADY = 'already'
RETRY = 'retry'


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class PassStats:
    """Aggregates for one pass"""
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    since: Optional[datetime] = None
    inspected: int = 0
    issues: int = 0
    newly_tagged: int = 0
    not_found: int = 0
    already_seen: int = 0
    retried: int = 0
    cleared: int = 0
    errors: int = 0
    aborted: bool = False
    abort_reason: Optional[str] = None

    def to_dict(self) -> dict:
        data = asdict(self)
        for key in ('started_at', 'finished_at', 'since'):
            data[key] = format_timestamp(data[key]) if data[key] else None
        return data


class AddressIssueService:
    """Runs reconciliation passes: scan source, classify, dedup, resolve, tag, record"""

    def __init__(
        self,
        ledger: LedgerStore,
        source: SourceConnector,
        destination: DestinationConnector,
        tag_id: int,
        tag_name: str = 'ADDRESS ISSUE',
        lookback_minutes: int = 24 * 60,
        extra_filter: Optional[str] = None,
        retry_policy: str = RETRY_UNRESOLVED,
        retry_window_hours: int = 72,
        tag_delay: float = 0.2,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = utc_now,
        should_stop: Optional[Callable[[], bool]] = None,
    ):
        if retry_policy not in (RETRY_UNRESOLVED, RETRY_NEVER):
            raise ValueError(f"Unknown retry policy: {retry_policy}")

        self.ledger = ledger
        self.source = source
        self.destination = destination
        self.tag_id = tag_id
        self.tag_name = tag_name
        self.lookback_minutes = lookback_minutes
        self.extra_filter = extra_filter or None
        self.retry_policy = retry_policy
        self.retry_window_hours = retry_window_hours
        self.tag_delay = tag_delay
        self.sleep = sleep
        self.clock = clock
        self.should_stop = should_stop or (lambda: False)
        self.last_stats: Optional[PassStats] = None

    def run_pass(self) -> PassStats:
        """Run one full pass.

        The watermark moves to the pass start time only when the scan
        finishes and no shutdown was requested. Raises SourceUnavailable
        when the scan fails; orders handled before the failure keep their
        ledger entries.
        """
        stats = PassStats(started_at=self.clock())
        self.last_stats = stats

        watermark = self.ledger.get_watermark()
        if watermark is None:
            since = stats.started_at - timedelta(minutes=self.lookback_minutes)
            logger.info("First run: using lookback %d minutes => since=%s",
                        self.lookback_minutes, format_timestamp(since))
        else:
            since = watermark
            logger.info("Using saved since=%s", format_timestamp(since))
        stats.since = since

        # scanned: every order the source returned; seen: the ones resolved this pass
        scanned: Set[str] = set()
        seen: Set[str] = set()
        try:
            for order in self.source.scan(since, self.extra_filter):
                if self.should_stop():
                    stats.aborted = True
                    stats.abort_reason = 'shutdown requested'
                    break
                scanned.add(order.source_id)
                self.process_order(order, stats, seen)
        except SourceUnavailable as e:
            stats.aborted = True
            stats.abort_reason = str(e)
            stats.finished_at = self.clock()
            logger.error("Pass aborted, watermark stays at %s: %s", format_timestamp(since), e)
            self.log_summary(stats)
            raise

        if not stats.aborted and self.retry_policy == RETRY_UNRESOLVED:
            self.retry_unresolved(stats, seen, scanned)

        if stats.aborted:
            logger.warning("Pass interrupted (%s), watermark not advanced", stats.abort_reason)
        else:
            self.ledger.set_watermark(stats.started_at)

        stats.finished_at = self.clock()
        self.log_summary(stats)
        return stats

    def process_order(self, order: SourceOrder, stats: PassStats, seen: Set[str]):
        """Walk one fetched order through classify -> dedup -> resolve -> tag"""
        stats.inspected += 1

        if order.validation_status:
            logger.debug("Source order %s updatedAt=%s validation=%r",
                         order.name, order.updated_at, order.validation_status)

        if not has_address_issue(order):
            return
        stats.issues += 1

        # Same order listed twice in one scan (overlapping statuses, shifting pages)
        if order.source_id in seen:
            stats.already_seen += 1
            return
        seen.add(order.source_id)

        decision = self.dedup_check(order.source_id)
        if decision == ALREADY:
            stats.already_seen += 1
            return

        if not order.business_number:
            logger.warning("Source order %s has no order number, skipping", order.source_id)
            return
        if decision == RETRY:
            stats.retried += 1

        logger.info("Address issue: %s (validation=%s) -> tagging destination order %s",
                    order.name, order.validation_status, order.business_number)
        self.resolve_and_tag(order.source_id, order.business_number, order.name,
                             order.validation_status, stats)
        self.sleep(self.tag_delay)

    def dedup_check(self, source_id: str) -> str:
        """NEW, ALREADY, or RETRY for a source order with an address issue"""
        if self.retry_policy == RETRY_NEVER:
            return ALREADY if self.ledger.is_processed(source_id) else NEW

        entry = self.ledger.get_entry(source_id)
        if entry is None:
            return NEW
        if entry.status in REOPENABLE_STATUSES:
            return RETRY
        return ALREADY

    def resolve_and_tag(self, source_id: str, business_number: str, name: Optional[str],
                        validation: Optional[str], stats: PassStats) -> str:
        """Look up the destination order and tag it; records and returns the outcome status"""
        destination_id = None
        try:
            found = self.destination.find_by_business_number(business_number)
            if found is None:
                stats.not_found += 1
                self.ledger.record_outcome(
                    source_id, STATUS_NOT_FOUND,
                    business_number=business_number,
                    source_order_name=name,
                    note='Not found in destination yet',
                )
                logger.info("Not in destination yet: %s", name or business_number)
                return STATUS_NOT_FOUND

            destination_id = found.order_id
            if self.tag_id in found.tag_ids:
                note = f"{self.tag_name} already present"
            else:
                self.destination.apply_tag(found.order_id, self.tag_id)
                note = f"Tagged {self.tag_name} (source validation={validation})"

            stats.newly_tagged += 1
            self.ledger.record_outcome(
                source_id, STATUS_TAGGED,
                business_number=business_number,
                source_order_name=name,
                destination_order_id=found.order_id,
                note=note,
            )
            logger.info("Tagged destination orderId=%s for source %s", found.order_id, name or business_number)
            return STATUS_TAGGED

        except (DestinationLookupFailure, TagApplicationFailure) as e:
            stats.errors += 1
            self.ledger.record_outcome(
                source_id, STATUS_ERROR,
                business_number=business_number,
                source_order_name=name,
                destination_order_id=destination_id,
                note=str(e),
            )
            logger.error("Error tagging for %s: %s", name or business_number, e)
            return STATUS_ERROR

        except Exception as e:
            # anything else is still one order's failure, not the pass's
            stats.errors += 1
            self.ledger.record_outcome(
                source_id, STATUS_ERROR,
                business_number=business_number,
                source_order_name=name,
                destination_order_id=destination_id,
                note=describe_error(e),
            )
            logger.exception("Unexpected error tagging for %s", name or business_number)
            return STATUS_ERROR

    def retry_unresolved(self, stats: PassStats, seen: Set[str], scanned: Set[str]):
        """Re-resolve not_found/error entries the scan did not bring back.

        Entries the scan did return, without an address issue, are marked
        cleared instead so later sweeps leave them alone.
        """
        window_start = stats.started_at - timedelta(hours=self.retry_window_hours)
        candidates = []
        for entry in self.ledger.retry_candidates(window_start, UNRESOLVED_STATUSES):
            if entry.source_order_id in seen:
                continue
            if entry.source_order_id in scanned:
                self.mark_cleared(entry, stats)
            else:
                candidates.append(entry)
        if not candidates:
            return

        logger.info("Retrying %d unresolved orders", len(candidates))
        for entry in candidates:
            if self.should_stop():
                stats.aborted = True
                stats.abort_reason = 'shutdown requested'
                return
            if not entry.business_number:
                continue

            stats.retried += 1
            seen.add(entry.source_order_id)
            self.resolve_and_tag(entry.source_order_id, entry.business_number,
                                 entry.source_order_name, None, stats)
            self.sleep(self.tag_delay)

    def mark_cleared(self, entry, stats: PassStats):
        stats.cleared += 1
        self.ledger.record_outcome(
            entry.source_order_id, STATUS_CLEARED,
            business_number=entry.business_number,
            source_order_name=entry.source_order_name,
            destination_order_id=entry.destination_order_id,
            note=f"Address no longer flagged at source (was {entry.status})",
        )
        logger.info("Address issue cleared at source: %s", entry.source_order_name or entry.business_number)

    def log_summary(self, stats: PassStats):
        logger.info(
            "Pass summary: inspected=%d issues=%d newly_tagged=%d not_found=%d "
            "already_seen=%d retried=%d cleared=%d errors=%d%s",
            stats.inspected, stats.issues, stats.newly_tagged, stats.not_found,
            stats.already_seen, stats.retried, stats.cleared, stats.errors,
            " (aborted)" if stats.aborted else "",
        )

    def health(self, poll_interval: Optional[int] = None, **extra) -> dict:
        """Snapshot for the health endpoint"""
        snapshot = {
            'status': 'healthy',
            'now': format_timestamp(self.clock()),
            'poll_interval_seconds': poll_interval,
            'last_watermark': self.ledger.get_watermark_iso(),
            'tag_name': self.tag_name,
            'retry_policy': self.retry_policy,
            'last_pass': self.last_stats.to_dict() if self.last_stats else None,
        }
        snapshot.update(extra)
        return snapshot
