"""mpc_shared.events — EventBridge publishing.

Environment variables:
    EVENT_BUS_NAME   default: default
"""

from __future__ import annotations

import json
import logging
import os
from typing import Any, Dict

from botocore.exceptions import BotoCoreError, ClientError

from mpc_shared.aws_clients import _get_events
from mpc_shared.errors import OrchestrationError

logger = logging.getLogger(__name__)

EVENT_BUS_NAME = os.environ.get("EVENT_BUS_NAME", "default")


def publish_event(source: str, detail_type: str, detail: Dict[str, Any], bus_name: str = "") -> None:
    try:
        resp = _get_events().put_events(
            Entries=[
                {
                    "Source": source,
                    "DetailType": detail_type,
                    "Detail": json.dumps(detail, separators=(",", ":"), sort_keys=True),
                    "EventBusName": bus_name or EVENT_BUS_NAME,
                }
            ]
        )
    except (ClientError, BotoCoreError) as exc:
        logger.error("put_events failed for %s", source, exc_info=True)
        raise OrchestrationError(f"could not publish {detail_type} event: {exc}") from exc
    if resp.get("FailedEntryCount"):
        entry = (resp.get("Entries") or [{}])[0]
        raise OrchestrationError(
            f"event {detail_type} was rejected: {entry.get('ErrorCode')} {entry.get('ErrorMessage')}"
        )
    logger.info("published %s event from %s", detail_type, source)
