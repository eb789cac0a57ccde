"""mpc_shared.secrets — Cached Secrets Manager lookups.

Secret values are re-fetched once per hour so rotated values reach warm
containers without a redeploy.
"""

from __future__ import annotations

import logging
import time
from typing import Dict, Tuple

from botocore.exceptions import ClientError

from mpc_shared.aws_clients import _get_secretsmanager
from mpc_shared.errors import SecretNotFoundError

logger = logging.getLogger(__name__)

_SECRET_TTL: float = 3600.0

_secret_cache: Dict[str, Tuple[str, float]] = {}


def get_secret(secret_name: str) -> str:
    """Return the ``SecretString`` of ``secret_name`` (cached)."""
    now = time.time()
    cached = _secret_cache.get(secret_name)
    if cached and (now - cached[1]) < _SECRET_TTL:
        return cached[0]

    sm = _get_secretsmanager()
    try:
        resp = sm.get_secret_value(SecretId=secret_name)
    except ClientError as exc:
        code = exc.response.get("Error", {}).get("Code")
        if code == "ResourceNotFoundException":
            raise SecretNotFoundError(f"secret {secret_name} not found") from exc
        raise
    value = resp.get("SecretString")
    if value is None:
        raise SecretNotFoundError(f"secret {secret_name} has no string value")
    _secret_cache[secret_name] = (value, now)
    logger.info("Loaded secret %s", secret_name)
    return value


def clear_secret_cache() -> None:
    _secret_cache.clear()
