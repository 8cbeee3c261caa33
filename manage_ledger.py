"""
Ledger management script - inspect entries, stats and the watermark
"""
import sys
from datetime import datetime, timezone

from ledger import LedgerStore, format_timestamp, parse_timestamp
from models import init_db


def list_recent(ledger: LedgerStore, limit: int = 25):
    """List most recently updated entries"""
    entries = ledger.recent(limit)

    if not entries:
        print("No orders processed yet.")
        return

    print("\n" + "=" * 80)
    print("RECENT PROCESSED ORDERS")
    print("=" * 80)

    for entry in entries:
        print(f"\n[{entry.status.upper()}] {entry.source_order_name or entry.business_number}")
        print(f"    Source ID: {entry.source_order_id}")
        print(f"    Destination ID: {entry.destination_order_id or '-'}")
        if entry.note:
            print(f"    Note: {entry.note[:200]}")
        print(f"    Updated: {entry.updated_at}")

    print("\n" + "=" * 80)


def show_stats(ledger: LedgerStore):
    """Show entry count per status"""
    stats = ledger.stats()
    if not stats:
        print("Ledger is empty.")
        return

    print("\n" + "-" * 40)
    for status, count in sorted(stats.items()):
        print(f"  {status:<12} {count}")
    print("-" * 40)


def show_watermark(ledger: LedgerStore):
    """Show the watermark used by the next pass"""
    value = ledger.get_watermark_iso()
    print(f"\nLast poll: {value or 'none yet (next pass uses first-run lookback)'}")


def set_watermark(ledger: LedgerStore):
    """Reset or move the watermark"""
    show_watermark(ledger)
    print("\nEnter a new ISO timestamp (e.g. 2024-10-01T00:00:00Z),")
    value = input("'now', or leave empty to clear: ").strip()

    confirm = input("Apply? (y/n): ").strip().lower()
    if confirm != 'y':
        print("Cancelled.")
        return

    if not value:
        ledger.reset_watermark()
        print("\n✓ Watermark cleared")
        return

    try:
        moment = datetime.now(timezone.utc) if value == 'now' else parse_timestamp(value)
    except ValueError:
        print(f"Error: Invalid timestamp '{value}'")
        return

    # An explicit operator move may go backward, so clear first
    ledger.reset_watermark()
    ledger.set_watermark(moment)
    print(f"\n✓ Watermark set to {format_timestamp(moment)}")


def main_menu(ledger: LedgerStore = None):
    """Main menu"""
    if ledger is None:
        # Initialize database
        init_db()
        ledger = LedgerStore()

    while True:
        print("\n" + "=" * 80)
        print("LEDGER MANAGEMENT")
        print("=" * 80)
        print("\n1. List recent orders")
        print("2. Show stats")
        print("3. Show watermark")
        print("4. Set / clear watermark")
        print("5. Exit")

        choice = input("\nSelect option: ").strip()

        if choice == "1":
            list_recent(ledger)
        elif choice == "2":
            show_stats(ledger)
        elif choice == "3":
            show_watermark(ledger)
        elif choice == "4":
            set_watermark(ledger)
        elif choice == "5":
            print("\nGoodbye!")
            break
        else:
            print("Invalid option")


if __name__ == '__main__':
    try:
        main_menu()
    except KeyboardInterrupt:
        print("\n\nInterrupted.")
        sys.exit(0)
