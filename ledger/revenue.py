"""
Scheduled revenue sweeps: daily fee aggregation and the monthly report.

Both are idempotent. Aggregation marks each platform_revenue entry in the same
transaction that adds it to its day's summary, so a rerun only picks up what
is still unmarked. The monthly report is recomputed from source records and
overwritten on every run.
"""

import logging
from collections import defaultdict
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from .documents import Clock, utc_now
from .errors import InvalidArgumentError
from .models import PayoutStatus, TransactionType
from .store import InMemoryDocumentStore, Transaction

logger = logging.getLogger(__name__)

REVENUE = "platform_revenue"


def month_bounds(month: str) -> tuple[datetime, datetime]:
    try:
        start = datetime.strptime(month, "%Y-%m").replace(tzinfo=timezone.utc)
    except ValueError:
        raise InvalidArgumentError("Month must be formatted as YYYY-MM.")
    if start.month == 12:
        end = start.replace(year=start.year + 1, month=1)
    else:
        end = start.replace(month=start.month + 1)
    return start, end


class RevenueReporter:
    def __init__(self, store: InMemoryDocumentStore, clock: Clock = utc_now):
        self.store = store
        self.clock = clock

    def aggregate(self) -> int:
        """Fold unaggregated fee entries into revenue_summaries/{date}. Returns entries folded."""
        by_day: dict[str, list[str]] = defaultdict(list)
        for entry in self.store.query(REVENUE, [("aggregated", "==", False)]):
            by_day[entry.get("timestamp").date().isoformat()].append(entry.path)

        folded = 0
        for day, paths in sorted(by_day.items()):
            try:
                folded += self.store.run_transaction(lambda txn: self._fold_day(txn, day, paths))
            except Exception:
                logger.exception(f"Revenue aggregation failed for {day}")
        logger.info(f"Revenue aggregation folded {folded} entries")
        return folded

    def _fold_day(self, txn: Transaction, day: str, paths: list[str]) -> int:
        summary_path = f"revenue_summaries/{day}"
        summary = txn.get(summary_path).to_dict() or {
            "date": day, "platform_fees": Decimal("0"), "entry_count": 0,
        }
        entries = [txn.get(path) for path in paths]
        pending = [e for e in entries if e.exists and not e.get("aggregated")]
        if not pending:
            return 0
        summary["platform_fees"] += sum((e.get("amount") for e in pending), Decimal("0"))
        summary["entry_count"] += len(pending)
        summary["updated_at"] = self.clock()
        txn.set(summary_path, summary)
        for entry in pending:
            txn.update(entry.path, {"aggregated": True})
        return len(pending)

    def monthly_report(self, month: str) -> Optional[dict]:
        start, end = month_bounds(month)
        in_month = [("timestamp", ">=", start), ("timestamp", "<", end)]
        try:
            gifts = self.store.query("sent_gifts", in_month)
            credits = self.store.query(
                "transactions", [("type", "==", TransactionType.GIFT_CREDIT.value)] + in_month
            )
            payouts = self.store.query("payout_requests", [
                ("status", "==", PayoutStatus.COMPLETED.value),
                ("processed_at", ">=", start),
                ("processed_at", "<", end),
            ])
            fees = self.store.query(REVENUE, in_month)
            report = {
                "month": month,
                "gift_count": len(gifts),
                "gift_coin_volume": sum(g.get("gift_cost") for g in gifts),
                "creator_credits": sum((c.get("amount") for c in credits), Decimal("0")),
                "completed_payouts": len(payouts),
                "payout_volume": sum((p.get("amount") for p in payouts), Decimal("0")),
                "platform_fees": sum((f.get("amount") for f in fees), Decimal("0")),
                "generated_at": self.clock(),
            }
            self.store.set(f"monthly_reports/{month}", report)
        except Exception:
            logger.exception(f"Monthly report failed for {month}")
            return None
        logger.info(f"Monthly report generated for {month}")
        return report
