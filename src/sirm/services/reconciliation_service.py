from __future__ import annotations

from collections import Counter
from typing import Iterable

from sirm.domain.models import ReasonCount, ReturnRecord, ReturnsSummary

TOP_REASONS = 5


class ReconciliationService:
    def summarize(self, returns: Iterable[ReturnRecord]) -> ReturnsSummary:
        returns = list(returns)
        total_count = len(returns)
        total_value = sum(float(r.amount) for r in returns)
        total_quantity = sum(int(r.quantity) for r in returns)
        average_value = total_value / total_count if total_count else 0.0

        # Grouped by the whole remark text; "Broken." and "broken" stay apart.
        reasons: Counter[str] = Counter()
        for r in returns:
            remark = (r.reason_remark or "").lower().strip()
            if remark:
                reasons[remark] += 1
        # sorted() is stable, so ties keep first-seen order
        ranked = sorted(reasons.items(), key=lambda kv: kv[1], reverse=True)[:TOP_REASONS]

        status_breakdown: dict[str, int] = {}
        for r in returns:
            status = r.status or "Unknown"
            status_breakdown[status] = status_breakdown.get(status, 0) + 1

        return ReturnsSummary(
            total_count=total_count,
            total_quantity=total_quantity,
            total_value=total_value,
            average_value=average_value,
            top_reasons=[ReasonCount(reason=k, count=v) for k, v in ranked],
            status_breakdown=status_breakdown,
        )

    @staticmethod
    def filter_returns(returns: Iterable[ReturnRecord], term: str) -> list[ReturnRecord]:
        needle = (term or "").strip().lower()
        returns = list(returns)
        if not needle:
            return returns
        out = []
        for r in returns:
            fields = (r.customer_name, r.product_name, r.device_id, r.reason_remark, r.status, r.receipt_code)
            if any(f is not None and needle in str(f).lower() for f in fields):
                out.append(r)
        return out
