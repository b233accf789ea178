from __future__ import annotations

"""
Firestore collection naming for revenue attribution.

Collections:
- attributionEvents/{event_id}
- revenueSettlements/{settlement_id}
"""

COLLECTION_ATTRIBUTION_EVENTS = "attributionEvents"
COLLECTION_REVENUE_SETTLEMENTS = "revenueSettlements"

# Firestore rejects a batch/transaction with more than 500 writes. A
# settlement costs one write plus one update per event.
MAX_BATCH_WRITES = 500
MAX_EVENTS_PER_SETTLEMENT = MAX_BATCH_WRITES - 1

DEFAULT_LIST_LIMIT = 100
