"""mpc_default_approver/lambda_function.py

Automated approver. Consumes approval requests from its SQS queue, decides
with a fixed configured result, signs the decision metadata with its
secp256k1 key and posts the response to the shared response queue.

The metadata and signature have the shape Maestro verifies at signing
time:

    metadata            base64(json({order_id, transaction_hash,
                                     approval_status, status_reason}))
    metadata_signature  base64(DER ECDSA over keccak256(metadata)))

Environment variables:
    APPROVER_NAME                      name registered as authorizing entity
    AUTO_APPROVER_RESULT               APPROVE (case-insensitive) or anything else to reject
    APPROVER_PRIVATE_KEY_SECRET_NAME   secret holding a PKCS8 PEM secp256k1 key
    RESPONSE_QUEUE_URL                 queue the responses are sent to
    SEND_SQS_MESSAGE_WAIT_SECONDS      delay before each response, default 0
"""

from __future__ import annotations

import base64
import json
import logging
import os
import time
from typing import Any, Dict, List

from botocore.exceptions import BotoCoreError, ClientError
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import Prehashed
from eth_utils import keccak

from mpc_shared.aws_clients import _get_sqs
from mpc_shared.errors import ValidationError
from mpc_shared.secrets import get_secret
from mpc_shared.transactions import parse_transaction, transaction_hash

logger = logging.getLogger()
logger.setLevel(logging.INFO)

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

APPROVER_NAME = os.environ.get("APPROVER_NAME", "")
AUTO_APPROVER_RESULT = os.environ.get("AUTO_APPROVER_RESULT", "APPROVE")
APPROVER_PRIVATE_KEY_SECRET_NAME = os.environ.get("APPROVER_PRIVATE_KEY_SECRET_NAME", "")
RESPONSE_QUEUE_URL = os.environ.get("RESPONSE_QUEUE_URL", "")
SEND_SQS_MESSAGE_WAIT_SECONDS = float(os.environ.get("SEND_SQS_MESSAGE_WAIT_SECONDS", "0"))


def _default_approval_status() -> int:
    return 1 if AUTO_APPROVER_RESULT.strip().upper() == "APPROVE" else 0


def _private_key() -> ec.EllipticCurvePrivateKey:
    pem = get_secret(APPROVER_PRIVATE_KEY_SECRET_NAME)
    key = serialization.load_pem_private_key(pem.encode(), password=None)
    if not isinstance(key, ec.EllipticCurvePrivateKey):
        raise ValidationError("approver key is not an EC private key")
    return key


def sign_metadata(metadata: str, key: ec.EllipticCurvePrivateKey) -> str:
    digest = keccak(metadata.encode("ascii"))
    signature = key.sign(digest, ec.ECDSA(Prehashed(hashes.SHA256())))
    return base64.b64encode(signature).decode()


def build_response(body: Dict[str, Any], key: ec.EllipticCurvePrivateKey) -> Dict[str, Any]:
    try:
        order_id = body["contextual_data"]["order_id"]
        transaction = parse_transaction(body["transaction"])
    except (KeyError, TypeError):
        raise ValidationError("message requires contextual_data.order_id and transaction")

    raw_status = body.get("approval_status")
    if raw_status is None:
        approval_status = _default_approval_status()
    else:
        try:
            approval_status = int(raw_status)
        except (TypeError, ValueError):
            raise ValidationError(f"invalid approval_status: {raw_status!r}")
    status_reason = f"This is an auto-approved transaction from approver: {APPROVER_NAME}"

    metadata = base64.b64encode(
        json.dumps(
            {
                "order_id": order_id,
                "transaction_hash": transaction_hash(transaction),
                "approval_status": approval_status,
                "status_reason": status_reason,
            }
        ).encode()
    ).decode()

    return {
        "approver_name": APPROVER_NAME,
        "order_id": order_id,
        "status_reason": status_reason,
        "approval_status": approval_status,
        "metadata": metadata,
        "metadata_signature": sign_metadata(metadata, key),
    }


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    records = event.get("Records") or []
    failures: List[Dict[str, str]] = []
    key = _private_key()
    sqs = _get_sqs()

    for record in records:
        message_id = record.get("messageId", "unknown")
        try:
            body_raw = record.get("body") or "{}"
            body = json.loads(body_raw) if isinstance(body_raw, str) else body_raw
            response = build_response(body, key)

            if SEND_SQS_MESSAGE_WAIT_SECONDS > 0:
                time.sleep(SEND_SQS_MESSAGE_WAIT_SECONDS)
            sqs.send_message(QueueUrl=RESPONSE_QUEUE_URL, MessageBody=json.dumps(response))
            logger.info(
                "sent approval_status=%s for order %s",
                response["approval_status"],
                response["order_id"],
            )
        except (json.JSONDecodeError, ValidationError) as exc:
            logger.error("message %s rejected: %s", message_id, exc)
            failures.append({"itemIdentifier": message_id})
        except (ClientError, BotoCoreError):
            logger.error("message %s could not be answered", message_id, exc_info=True)
            failures.append({"itemIdentifier": message_id})

    return {"batchItemFailures": failures}
