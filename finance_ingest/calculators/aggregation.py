"""Monthly aggregation of financial records."""

import pandas as pd

from finance_ingest.models.report import FinancialRecord, MonthlyBucket


def records_to_frame(records: list[FinancialRecord]) -> pd.DataFrame:
    """One row per record, indexed by the record's position in `records`."""
    return pd.DataFrame(
        {
            "month_key": [r.month_key for r in records],
            "amount_normalized": [r.amount_normalized for r in records],
        },
        index=pd.RangeIndex(len(records)),
    )


def aggregate_monthly(records: list[FinancialRecord]) -> list[MonthlyBucket]:
    """
    Fold records into one bucket per month.

    Args:
        records: Financial records from any number of reports

    Returns:
        MonthlyBucket list sorted ascending by month_key. Record order inside a
        bucket follows the input order.
    """
    if not records:
        return []

    frame = records_to_frame(records)
    buckets = []
    for month_key, group in frame.groupby("month_key", sort=True):
        buckets.append(MonthlyBucket(
            month_key=str(month_key),
            total_normalized=float(group["amount_normalized"].sum()),
            record_count=int(len(group)),
            records=[records[i] for i in group.index],
        ))
    return buckets
