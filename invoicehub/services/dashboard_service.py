# invoicehub/services/dashboard_service.py
from collections import Counter
from typing import Any, Sequence

from invoicehub.models.invoice import INVOICE_STATUSES, Invoice


def invoice_stats(invoices: Sequence[Invoice]) -> dict[str, Any]:
    """Counts and amount totals per status, plus invoices created per month."""
    counts = {s: 0 for s in INVOICE_STATUSES}
    amounts = {s: 0.0 for s in INVOICE_STATUSES}
    monthly: Counter = Counter()

    for inv in invoices:
        counts[inv.status] = counts.get(inv.status, 0) + 1
        amounts[inv.status] = amounts.get(inv.status, 0.0) + (inv.amount or 0)
        if inv.created_at:
            monthly[inv.created_at.strftime("%Y-%m")] += 1

    return {
        "total": len(invoices),
        "total_amount": round(sum(amounts.values()), 2),
        "by_status": counts,
        "amount_by_status": {s: round(a, 2) for s, a in amounts.items()},
        "monthly": [{"month": m, "count": monthly[m]} for m in sorted(monthly)],
    }
