"""Internal transfer detection package."""

from reconciler.transfers.dedup import (
    TransferDeduplicator,
    count_toward_totals,
    pair_transfers,
)

__all__ = ["TransferDeduplicator", "count_toward_totals", "pair_transfers"]
