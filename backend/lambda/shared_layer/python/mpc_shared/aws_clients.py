"""mpc_shared.aws_clients — Lazy-singleton AWS service clients.

One client per service is created on first use and kept for the lifetime
of the Lambda container. ``_reset_clients()`` drops them so tests running
under moto get fresh clients bound to the mocked endpoints.
"""

from __future__ import annotations

import os
from typing import Any, Dict, Optional

import boto3
from botocore.config import Config

AWS_REGION: str = os.environ.get("AWS_REGION", "us-east-1")

# DynamoDB carries every order transition, so it gets the longer retry budget.
_MAX_ATTEMPTS: Dict[str, int] = {"dynamodb": 5}
_DEFAULT_MAX_ATTEMPTS = 3

_clients: Dict[str, Any] = {}


def _client(service: str, region: Optional[str] = None):
    client = _clients.get(service)
    if client is None:
        attempts = _MAX_ATTEMPTS.get(service, _DEFAULT_MAX_ATTEMPTS)
        client = boto3.client(
            service,
            region_name=region or AWS_REGION,
            config=Config(retries={"max_attempts": attempts, "mode": "standard"}),
        )
        _clients[service] = client
    return client


def _get_ddb(region: Optional[str] = None):
    return _client("dynamodb", region)


def _get_sqs(region: Optional[str] = None):
    return _client("sqs", region)


def _get_sfn(region: Optional[str] = None):
    return _client("stepfunctions", region)


def _get_secretsmanager(region: Optional[str] = None):
    return _client("secretsmanager", region)


def _get_events(region: Optional[str] = None):
    return _client("events", region)


def _reset_clients() -> None:
    _clients.clear()
