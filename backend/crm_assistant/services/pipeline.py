from collections.abc import Iterable
from datetime import datetime
from typing import Any

UNKNOWN_KIND = "unknown"


def window_bounds(now: datetime, time_window: str = "month") -> tuple[datetime, datetime]:
    """Calendar-aligned half-open window ``[start, end)`` containing ``now``.

    ``month`` runs from the first of the month to the first of the next
    month; ``quarter`` and ``year`` work the same way. The timezone of
    ``now`` is kept.
    """
    if time_window == "year":
        start_month, span = 1, 12
    elif time_window == "quarter":
        start_month, span = 3 * ((now.month - 1) // 3) + 1, 3
    else:
        start_month, span = now.month, 1

    start = now.replace(month=start_month, day=1, hour=0, minute=0, second=0, microsecond=0)
    end_month = start_month + span
    end_year = start.year + (end_month - 1) // 12
    end_month = (end_month - 1) % 12 + 1
    end = start.replace(year=end_year, month=end_month)
    return start, end


def _value(record: Any, name: str) -> float:
    value = record.get(name) if isinstance(record, dict) else getattr(record, name, None)
    return float(value) if value is not None else 0.0


def summarize_pipeline(deals: Iterable[Any]) -> dict[str, dict[str, Any]]:
    """Count deals and total their amount and cost per deal kind.

    Accepts ORM rows or plain dicts. Deals without a kind are counted under
    ``unknown``.
    """
    summary: dict[str, dict[str, Any]] = {}
    for deal in deals:
        kind = deal.get("deal_kind") if isinstance(deal, dict) else deal.deal_kind
        bucket = summary.setdefault(
            kind or UNKNOWN_KIND,
            {"count": 0, "total_amount": 0.0, "total_cost": 0.0},
        )
        bucket["count"] += 1
        bucket["total_amount"] += _value(deal, "amount")
        bucket["total_cost"] += _value(deal, "cost")
    return summary
