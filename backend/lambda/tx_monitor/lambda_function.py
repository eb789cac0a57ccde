"""tx_monitor/lambda_function.py

Scheduled sweep over orders that have not moved for a while.

SUBMITTED signature, speedup and cancellation orders are checked against
the chain:

* mined with a receipt: the chain listener missed it, so the monitor
  republishes the transaction on the chain listener's source and the
  usual mined-transaction handling (order update, nonce writer) runs
* mined without a receipt, or unknown to the node: DROPPED
* still in the mempool: stays SUBMITTED, with ``tx_monitor_last_modified_at``
  stamped so the sweep shows it was looked at

SIGNED and SELECTED_FOR_SIGNING orders younger than the order age
threshold get a ``stale_order_check`` event that re-runs order selection
for their key.

A failure on one order is logged and the sweep moves on.

Environment variables:
    ORDER_STATUS_TABLE_NAME, EVENT_BUS_NAME
    ENVIRONMENT                   event source prefix
    LAST_MODIFIED_THRESHOLD       minutes, default: 10
    ORDER_AGE_THRESHOLD_IN_SECS   default: 600
    <CHAIN>_ENDPOINT, <CHAIN>_API_KEY_SECRET_NAME
"""

from __future__ import annotations

import datetime as dt
import logging
import os
from typing import Any, Dict, Optional

from mpc_shared import blockchain, events, orders
from mpc_shared.blockchain import ETHEREUM_MAINNET, ETHEREUM_SEPOLIA, POLYGON_AMOY, POLYGON_MAINNET
from mpc_shared.errors import BlockchainProviderError, OrchestrationError, RepositoryError
from mpc_shared.model import (
    CANCELLATION_ORDER,
    DROPPED,
    SELECTED_FOR_SIGNING,
    SIGNATURE_ORDER,
    SIGNED,
    SPEEDUP_ORDER,
    SUBMITTED,
)
from mpc_shared.serialization import _parse_z

logger = logging.getLogger()
logger.setLevel(logging.INFO)

ENVIRONMENT = os.environ.get("ENVIRONMENT", "dev")
LAST_MODIFIED_THRESHOLD = int(os.environ.get("LAST_MODIFIED_THRESHOLD", "10"))
ORDER_AGE_THRESHOLD_IN_SECS = int(os.environ.get("ORDER_AGE_THRESHOLD_IN_SECS", "600"))

CHAIN_LISTENER_PREFIX = "ana-chain-listener"
TX_EVENT_DETAIL_TYPE = "publish_tx_event_tx_monitor"
STALE_ORDER_DETAIL_TYPE = "stale_order_check"

MONITORED_ORDER_TYPES = (SIGNATURE_ORDER, SPEEDUP_ORDER, CANCELLATION_ORDER)

_CHAIN_NAMES = {
    ETHEREUM_MAINNET: "ethereum",
    ETHEREUM_SEPOLIA: "ethereum",
    POLYGON_MAINNET: "polygon",
    POLYGON_AMOY: "polygon",
}


def chain_listener_source(chain_id: int) -> str:
    return f"{CHAIN_LISTENER_PREFIX}-{_CHAIN_NAMES.get(chain_id, 'unsupported')}-{chain_id}"


def _chain_id(order: Dict[str, Any]) -> Optional[int]:
    chain_id = ((order.get("data") or {}).get("transaction") or {}).get("chain_id")
    return int(chain_id) if chain_id is not None else None


def _is_mined(transaction: Dict[str, Any]) -> bool:
    return all(transaction.get(k) is not None for k in ("blockNumber", "blockHash", "transactionIndex"))


def _publish_mined(order: Dict[str, Any], chain_id: int, transaction: Dict[str, Any]) -> None:
    detail = {
        "hash": transaction.get("hash"),
        "nonce": transaction.get("nonce"),
        "from": transaction.get("from"),
        "chainId": hex(chain_id),
        "blockNumber": transaction.get("blockNumber"),
        "blockHash": transaction.get("blockHash"),
    }
    events.publish_event(chain_listener_source(chain_id), TX_EVENT_DETAIL_TYPE, detail)
    logger.info("republished mined transaction of order %s", order["order_id"])


def check_submitted_order(order: Dict[str, Any]) -> None:
    order_id = order["order_id"]
    chain_id = _chain_id(order)
    if chain_id is None:
        logger.warning("could not find chain_id for order %s", order_id)
        return
    tx_hash = order.get("transaction_hash")
    if not tx_hash:
        logger.warning("order %s is SUBMITTED without a transaction hash", order_id)
        return

    transaction = blockchain.get_tx_by_hash(chain_id, tx_hash)
    if transaction is None:
        logger.info("transaction %s of order %s is unknown to the node", tx_hash, order_id)
        orders.update_order_status_and_tx_monitor_last_update(order_id, DROPPED)
    elif not _is_mined(transaction):
        logger.info("transaction %s of order %s is still in the mempool", tx_hash, order_id)
        orders.update_order_status_and_tx_monitor_last_update(order_id, SUBMITTED)
    elif blockchain.get_tx_receipt(chain_id, tx_hash) is None:
        logger.info("no receipt for transaction %s of order %s", tx_hash, order_id)
        orders.update_order_status_and_tx_monitor_last_update(order_id, DROPPED)
    else:
        _publish_mined(order, chain_id, transaction)


def _is_recent(order: Dict[str, Any]) -> bool:
    age = dt.datetime.now(dt.timezone.utc) - _parse_z(order["last_modified_at"])
    return age < dt.timedelta(seconds=ORDER_AGE_THRESHOLD_IN_SECS)


def process_submitted_orders() -> None:
    for order in orders.get_orders_by_status(SUBMITTED, LAST_MODIFIED_THRESHOLD):
        if order.get("order_type") not in MONITORED_ORDER_TYPES:
            continue
        try:
            check_submitted_order(order)
        except (BlockchainProviderError, RepositoryError, OrchestrationError) as exc:
            logger.error("failed to check order %s: %s", order["order_id"], exc, exc_info=True)


def process_stale_orders(state: str) -> None:
    source = f"{ENVIRONMENT}-found-stale-{state.lower()}-order-event"
    for order in orders.get_orders_by_status(state, LAST_MODIFIED_THRESHOLD):
        if not _is_recent(order):
            continue
        events.publish_event(source, STALE_ORDER_DETAIL_TYPE, {"order_id": order["order_id"]})
        logger.info("sent an event for a %s order with order_id %s", state, order["order_id"])


def lambda_handler(event: Dict[str, Any], context: Any) -> None:
    logger.info("transaction monitor started")
    process_submitted_orders()
    process_stale_orders(SIGNED)
    process_stale_orders(SELECTED_FOR_SIGNING)
