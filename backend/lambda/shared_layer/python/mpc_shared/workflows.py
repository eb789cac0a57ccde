"""mpc_shared.workflows — Step Functions execution helpers."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict

from botocore.exceptions import BotoCoreError, ClientError

from mpc_shared.aws_clients import _get_sfn
from mpc_shared.errors import OrchestrationError

logger = logging.getLogger(__name__)


def start_execution(state_machine_arn: str, execution_input: Dict[str, Any], name: str) -> str:
    """Start ``state_machine_arn``; the execution is named after the order."""
    if not state_machine_arn:
        raise OrchestrationError("state machine arn is not configured")
    sfn = _get_sfn()
    try:
        resp = sfn.start_execution(
            stateMachineArn=state_machine_arn,
            name=name,
            input=json.dumps(execution_input, default=str),
        )
    except (ClientError, BotoCoreError) as exc:
        logger.error("start_execution failed for %s", name, exc_info=True)
        raise OrchestrationError(f"could not start workflow for {name}: {exc}") from exc
    logger.info("Started execution %s", resp["executionArn"])
    return resp["executionArn"]
