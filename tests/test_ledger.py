from datetime import datetime, timedelta, timezone

from ledger import format_timestamp, parse_timestamp
from models import STATUS_TAGGED, STATUS_NOT_FOUND, STATUS_ERROR


def test_watermark_absent_on_first_run(ledger):
    assert ledger.get_watermark() is None
    assert ledger.get_watermark_iso() is None


def test_watermark_roundtrip_and_monotonic(ledger):
    first = datetime(2024, 10, 1, 12, 0, 30, 500000, tzinfo=timezone.utc)
    assert ledger.set_watermark(first) is True
    assert ledger.get_watermark() == first.replace(microsecond=0)
    assert ledger.get_watermark_iso() == '2024-10-01T12:00:30Z'

    # never moves backward
    assert ledger.set_watermark(first - timedelta(hours=1)) is False
    assert ledger.get_watermark() == first.replace(microsecond=0)

    later = first + timedelta(minutes=5)
    assert ledger.set_watermark(later) is True
    assert ledger.get_watermark() == later.replace(microsecond=0)


def test_reset_watermark(ledger):
    ledger.set_watermark(datetime(2024, 10, 1, tzinfo=timezone.utc))
    ledger.reset_watermark()
    assert ledger.get_watermark() is None


def test_timestamp_helpers():
    assert format_timestamp(datetime(2024, 1, 2, 3, 4, 5)) == '2024-01-02T03:04:05Z'
    parsed = parse_timestamp('2024-01-02T03:04:05Z')
    assert parsed == datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
    assert parse_timestamp('2024-01-02T05:04:05+02:00') == parsed


def test_record_outcome_upserts_one_row(ledger):
    ledger.record_outcome('gid://1', STATUS_NOT_FOUND, business_number='1001',
                          source_order_name='#1001', note='Not found in destination yet')
    first = ledger.get_entry('gid://1')
    assert ledger.is_processed('gid://1')
    assert not ledger.is_processed('gid://2')

    ledger.record_outcome('gid://1', STATUS_TAGGED, business_number='1001',
                          destination_order_id=555, note='Tagged')
    entry = ledger.get_entry('gid://1')

    assert entry.status == STATUS_TAGGED
    assert entry.destination_order_id == '555'
    assert entry.source_order_name == '#1001'
    assert entry.created_at == first.created_at
    assert entry.updated_at >= first.updated_at
    assert ledger.stats() == {STATUS_TAGGED: 1}


def test_stats_and_recent(ledger):
    ledger.record_outcome('a', STATUS_TAGGED, business_number='1')
    ledger.record_outcome('b', STATUS_NOT_FOUND, business_number='2')
    ledger.record_outcome('c', STATUS_ERROR, business_number='3', note='boom')
    ledger.record_outcome('d', STATUS_NOT_FOUND, business_number='4')

    assert ledger.stats() == {STATUS_TAGGED: 1, STATUS_NOT_FOUND: 2, STATUS_ERROR: 1}

    recent = ledger.recent(3)
    assert [e.source_order_id for e in recent] == ['d', 'c', 'b']
    assert recent[1].to_dict()['note'] == 'boom'


def test_retry_candidates_filters_status_and_age(ledger):
    ledger.record_outcome('a', STATUS_TAGGED, business_number='1')
    ledger.record_outcome('b', STATUS_NOT_FOUND, business_number='2')
    ledger.record_outcome('c', STATUS_ERROR, business_number='3')

    week_ago = datetime.now(timezone.utc) - timedelta(days=7)
    ids = [e.source_order_id for e in ledger.retry_candidates(week_ago, (STATUS_NOT_FOUND, STATUS_ERROR))]
    assert ids == ['b', 'c']

    tomorrow = datetime.now(timezone.utc) + timedelta(days=1)
    assert ledger.retry_candidates(tomorrow, (STATUS_NOT_FOUND, STATUS_ERROR)) == []
