"""mpc_shared.fees — Gas fee suggestions.

Two estimators share one response shape:

* ``suggest_fees_from_pending`` ranks the priority fees of the pending
  block and picks the 25th, 50th and 95th percentiles.
* ``suggest_fees_from_history`` aggregates ``eth_feeHistory`` rewards
  (0th, 50th and 100th percentile per block) into min / median / max.

In both, ``max_fee_per_gas = base_fee + priority_fee`` and the legacy gas
price equals the max fee. Amounts are returned as decimal strings.
"""

from __future__ import annotations

import math
from typing import Any, Dict, List

from mpc_shared.errors import FeeHistoryError

LOW_PERCENTILE = 0.25
MEDIUM_PERCENTILE = 0.50
HIGH_PERCENTILE = 0.95

HISTORY_PERCENTILES = [0.0, 50.0, 100.0]
DEFAULT_BLOCK_COUNT = 5
MAX_BLOCK_COUNT = 100


def percentile(sorted_values: List[int], p: float) -> int:
    index = math.ceil(p * len(sorted_values)) - 1
    if 0 <= index < len(sorted_values):
        return sorted_values[index]
    return sorted_values[-1]


def median(values: List[int]) -> int:
    ordered = sorted(values)
    mid = len(ordered) // 2
    if len(ordered) % 2 == 0:
        return (ordered[mid - 1] + ordered[mid]) // 2
    return ordered[mid]


def _fee_response(chain_id: int, base_fee: int, priority: Dict[str, int]) -> Dict[str, Any]:
    max_fee = {k: v + base_fee for k, v in priority.items()}
    return {
        "chain_id": chain_id,
        "eip1559": {
            "max_priority_fee_per_gas": {k: str(v) for k, v in priority.items()},
            "max_fee_per_gas": {k: str(v) for k, v in max_fee.items()},
        },
        "legacy": {"gas_price": {k: str(v) for k, v in max_fee.items()}},
    }


def suggest_fees_from_pending(chain_id: int, base_fee: int, priority_fees: List[int]) -> Dict[str, Any]:
    if not priority_fees:
        raise FeeHistoryError(
            "the max_priority_fee_per_gas array was empty, check the RPC response"
        )
    ordered = sorted(priority_fees)
    priority = {
        "low": percentile(ordered, LOW_PERCENTILE),
        "medium": percentile(ordered, MEDIUM_PERCENTILE),
        "high": percentile(ordered, HIGH_PERCENTILE),
    }
    return _fee_response(chain_id, base_fee, priority)


def parse_block_count(raw: Any) -> int:
    """Missing, invalid or zero counts fall back to the default."""
    try:
        count = int(raw)
    except (TypeError, ValueError):
        return DEFAULT_BLOCK_COUNT
    if count <= 0:
        return DEFAULT_BLOCK_COUNT
    return min(count, MAX_BLOCK_COUNT)


def suggest_fees_from_history(chain_id: int, fee_history: Dict[str, Any]) -> Dict[str, Any]:
    rewards = fee_history.get("reward") or []
    if not rewards:
        raise FeeHistoryError('the "reward" array was empty, check the RPC response')
    if any(not row for row in rewards):
        raise FeeHistoryError('the "reward" detail array was incomplete, check the RPC response')
    base_fees = fee_history.get("base_fee_per_gas") or []
    if not base_fees:
        raise FeeHistoryError('the "base_fee_per_gas" array was empty, check the RPC response')

    priority = {
        "min": min(row[0] for row in rewards),
        "max": max(row[len(row) - 1] for row in rewards),
        "median": median([row[len(row) // 2] for row in rewards]),
    }
    return _fee_response(chain_id, median(base_fees), priority)
