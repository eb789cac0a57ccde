"""maestro_fetch_policy/lambda_function.py

Step-function task that loads a policy from Maestro and expands it into
the ordered list of approvers the order must collect.

Input:   {"policy_name", "domain_name"}
Output:  {"policy": {"name", "approvals": [{"level", "name"}, ...]}}

Environment variables:
    MAESTRO_URL, MAESTRO_TENANT_NAME, SERVICE_NAME, MAESTRO_API_KEY_SECRET_NAME
"""

from __future__ import annotations

import logging
from typing import Any, Dict

from mpc_shared import maestro
from mpc_shared.errors import ValidationError

logger = logging.getLogger()
logger.setLevel(logging.INFO)


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    policy_name = event.get("policy_name")
    domain_name = event.get("domain_name")
    if not policy_name or not domain_name:
        raise ValidationError("policy_name and domain_name are required")

    policy = maestro.get_policy(domain_name, policy_name)
    logger.info(
        "policy %s for %s requires %d approvals",
        policy_name,
        domain_name,
        len(policy["approvals"]),
    )
    return {"policy": policy}
