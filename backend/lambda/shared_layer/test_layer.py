"""test_layer.py — Unit tests for mpc_shared plumbing, model and fee math.

Run from shared_layer directory:
    PYTHONPATH=python python3 -m pytest test_layer.py -v
"""

from __future__ import annotations

import base64
import json
import os
import sys
import unittest
from unittest.mock import MagicMock, patch

# Ensure the layer's python/ directory is importable.
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "python"))

from mpc_shared import aws_clients
from mpc_shared.aws_clients import _get_ddb
from mpc_shared.errors import FeeHistoryError, PreviousStatesNotFoundError, ValidationError
from mpc_shared.fees import (
    median,
    parse_block_count,
    percentile,
    suggest_fees_from_history,
    suggest_fees_from_pending,
)
from mpc_shared.http_utils import (
    RequestError,
    _client_id,
    _error,
    _json_body,
    _parse_body,
    _path_method,
    _path_param,
    _response,
    _validate_content_type,
)
from mpc_shared.model import (
    ADDRESS_FROM,
    DEFAULT,
    PolicyMapping,
    is_final_state,
    is_locking_state,
    is_pending_state,
    new_order,
    parse_order_state,
    policy_approval_statuses,
    possible_previous_states,
    registry_type_from_sk,
)
from mpc_shared.serialization import (
    _deserialize,
    _now_z,
    _serialize,
    from_dynamodb_json,
    to_dynamodb_json,
)


class HttpUtilsTests(unittest.TestCase):
    def test_response_format(self):
        resp = _response(200, {"key": "val"})
        self.assertEqual(resp["statusCode"], 200)
        self.assertIn("Content-Type", resp["headers"])
        self.assertEqual(json.loads(resp["body"])["key"], "val")

    def test_error_format(self):
        resp = _error(400, "validation", "bad input")
        self.assertEqual(resp["statusCode"], 400)
        self.assertEqual(json.loads(resp["body"]), {"code": "validation", "message": "bad input"})

    def test_parse_body_base64(self):
        raw = base64.b64encode(b'{"key": "b64"}').decode()
        self.assertEqual(_parse_body({"body": raw, "isBase64Encoded": True}), {"key": "b64"})

    def test_json_body_empty(self):
        with self.assertRaises(RequestError) as ctx:
            _json_body({"body": None})
        self.assertEqual(json.loads(ctx.exception.response["body"])["message"], "body was empty")

    def test_json_body_not_an_object(self):
        with self.assertRaises(RequestError) as ctx:
            _json_body({"body": "[1, 2]"})
        self.assertEqual(
            json.loads(ctx.exception.response["body"])["message"],
            "body failed to be converted to a json object",
        )

    def test_path_param_missing_and_wrong_type(self):
        with self.assertRaises(RequestError) as ctx:
            _path_param({"pathParameters": {}}, "chain_id", int)
        self.assertEqual(
            json.loads(ctx.exception.response["body"])["message"],
            "chain_id not found in request path",
        )
        with self.assertRaises(RequestError) as ctx:
            _path_param({"pathParameters": {"chain_id": "abc"}}, "chain_id", int)
        self.assertEqual(
            json.loads(ctx.exception.response["body"])["message"],
            "chain_id with wrong type in request path",
        )

    def test_client_id_from_claims(self):
        event = {"requestContext": {"authorizer": {"claims": {"client_id": "client-1"}}}}
        self.assertEqual(_client_id(event), "client-1")

    def test_client_id_missing_is_unauthorized(self):
        with self.assertRaises(RequestError) as ctx:
            _client_id({"requestContext": {}})
        self.assertEqual(ctx.exception.response["statusCode"], 401)

    def test_content_type(self):
        _validate_content_type({"headers": {"Content-Type": "application/json; charset=utf-8"}})
        with self.assertRaises(RequestError) as ctx:
            _validate_content_type({"headers": {"content-type": "text/plain"}})
        self.assertEqual(ctx.exception.response["statusCode"], 415)

    def test_path_method_v1(self):
        method, path = _path_method({"httpMethod": "delete", "path": "/policies/1/default"})
        self.assertEqual((method, path), ("DELETE", "/policies/1/default"))


class SerializationTests(unittest.TestCase):
    def test_serialize_float(self):
        self.assertEqual(_serialize(3.14)["N"], "3.14")

    def test_deserialize_nested_decimals(self):
        item = {
            "count": {"N": "42"},
            "policy": {"M": {"approvals": {"L": [{"M": {"approval_status": {"N": "1"}}}]}}},
        }
        result = _deserialize(item)
        self.assertEqual(result["count"], 42)
        self.assertEqual(result["policy"]["approvals"][0]["approval_status"], 1)
        self.assertIsInstance(result["policy"]["approvals"][0]["approval_status"], int)

    def test_now_z_has_milliseconds(self):
        self.assertRegex(_now_z(), r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}\.\d{3}Z$")

    def test_to_dynamodb_json(self):
        value = {"a": None, "b": True, "c": 2, "d": 1.5, "e": "x", "f": [1, "y"]}
        self.assertEqual(
            to_dynamodb_json(value),
            {
                "M": {
                    "a": {"NULL": True},
                    "b": {"BOOL": True},
                    "c": {"N": "2"},
                    "d": {"N": "1.5"},
                    "e": {"S": "x"},
                    "f": {"L": [{"N": "1"}, {"S": "y"}]},
                }
            },
        )

    def test_from_dynamodb_json_numbers(self):
        self.assertEqual(from_dynamodb_json({"N": "10"}), 10)
        self.assertEqual(from_dynamodb_json({"N": "10.25"}), 10.25)
        with self.assertRaises(ValidationError):
            from_dynamodb_json({"N": "ten"})

    def test_from_dynamodb_json_rejects_sets(self):
        with self.assertRaises(ValidationError):
            from_dynamodb_json({"SS": ["a", "b"]})


class ModelTests(unittest.TestCase):
    def test_parse_order_state_is_case_insensitive(self):
        self.assertEqual(parse_order_state("selected_for_signing"), "SELECTED_FOR_SIGNING")
        with self.assertRaises(ValidationError):
            parse_order_state("FINISHED")

    def test_previous_states(self):
        self.assertEqual(possible_previous_states("SUBMITTED"), ["SIGNED"])
        self.assertIn("DROPPED", possible_previous_states("REPLACED"))
        with self.assertRaises(PreviousStatesNotFoundError):
            possible_previous_states("RECEIVED")

    def test_state_groups(self):
        self.assertTrue(is_pending_state("RECEIVED"))
        self.assertFalse(is_pending_state("COMPLETED"))
        self.assertTrue(is_final_state("CANCELLED"))
        self.assertFalse(is_final_state("SUBMITTED"))
        self.assertTrue(is_locking_state("SIGNED"))
        self.assertFalse(is_locking_state("APPROVERS_REVIEWED"))

    def test_new_order_carries_client_id(self):
        order = new_order("client-1", "SIGNATURE_ORDER", {"address": "0xabc"})
        self.assertEqual(order["data"], {"client_id": "client-1", "address": "0xabc"})
        self.assertEqual(order["state"], "RECEIVED")
        self.assertEqual(order["order_version"], "1")

    def test_policy_approval_statuses(self):
        policy = {
            "name": "p",
            "approvals": [
                {"level": "Tenant", "name": "a", "response": {"approval_status": 1}},
                {"level": "Tenant", "name": "b", "response": {"approval_status": 0}},
                {"level": "Domain", "name": "c"},
            ],
        }
        self.assertEqual(
            policy_approval_statuses(policy),
            {"a": "APPROVED", "b": "REJECTED", "c": "PENDING"},
        )

    def test_policy_mapping_keys(self):
        mapping = PolicyMapping("client-1", 1, "p", ADDRESS_FROM, "0xABC")
        self.assertEqual(mapping.pk, "CLIENT#client-1#CHAIN_ID#1")
        self.assertEqual(mapping.sk, "ADDRESS_FROM#0xabc")
        default = PolicyMapping("client-1", 1, "p")
        self.assertEqual(default.sk, "ADDRESS#DEFAULT")
        self.assertEqual(registry_type_from_sk("ADDRESS#DEFAULT"), DEFAULT)

    def test_policy_mapping_requires_address(self):
        with self.assertRaises(ValidationError):
            PolicyMapping("client-1", 1, "p", "ADDRESS_TO")


class FeeTests(unittest.TestCase):
    def test_percentile(self):
        values = list(range(1, 21))
        self.assertEqual(percentile(values, 0.25), 5)
        self.assertEqual(percentile(values, 0.50), 10)
        self.assertEqual(percentile(values, 0.95), 19)
        self.assertEqual(percentile([7], 0.95), 7)

    def test_median(self):
        self.assertEqual(median([3, 1, 2]), 2)
        self.assertEqual(median([4, 1, 3, 2]), 2)

    def test_pending_fees(self):
        result = suggest_fees_from_pending(1, 100, list(range(1, 21)))
        self.assertEqual(
            result["eip1559"]["max_priority_fee_per_gas"],
            {"low": "5", "medium": "10", "high": "19"},
        )
        self.assertEqual(
            result["eip1559"]["max_fee_per_gas"], {"low": "105", "medium": "110", "high": "119"}
        )
        self.assertEqual(result["legacy"]["gas_price"], result["eip1559"]["max_fee_per_gas"])

    def test_pending_fees_empty(self):
        with self.assertRaises(FeeHistoryError):
            suggest_fees_from_pending(1, 100, [])

    def test_history_single_block(self):
        result = suggest_fees_from_history(1, {"reward": [[11, 12, 13]], "base_fee_per_gas": [100]})
        self.assertEqual(
            result["eip1559"]["max_priority_fee_per_gas"], {"min": "11", "max": "13", "median": "12"}
        )
        self.assertEqual(
            result["eip1559"]["max_fee_per_gas"], {"min": "111", "max": "113", "median": "112"}
        )

    def test_history_three_blocks(self):
        history = {
            "reward": [[31, 32, 33], [11, 12, 13], [21, 22, 23]],
            "base_fee_per_gas": [200, 300, 100],
        }
        result = suggest_fees_from_history(11155111, history)
        self.assertEqual(
            result["eip1559"]["max_priority_fee_per_gas"], {"min": "11", "max": "33", "median": "22"}
        )
        self.assertEqual(
            result["legacy"]["gas_price"], {"min": "211", "max": "233", "median": "222"}
        )

    def test_history_empty_arrays(self):
        with self.assertRaises(FeeHistoryError):
            suggest_fees_from_history(1, {"reward": [], "base_fee_per_gas": [1]})
        with self.assertRaises(FeeHistoryError):
            suggest_fees_from_history(1, {"reward": [[1, 2, 3]], "base_fee_per_gas": []})

    def test_history_short_reward_rows(self):
        result = suggest_fees_from_history(1, {"reward": [[5, 9], [4]], "base_fee_per_gas": [100]})
        self.assertEqual(
            result["eip1559"]["max_priority_fee_per_gas"], {"min": "4", "max": "9", "median": "6"}
        )
        self.assertEqual(
            result["eip1559"]["max_fee_per_gas"], {"min": "104", "max": "109", "median": "106"}
        )
        with self.assertRaises(FeeHistoryError):
            suggest_fees_from_history(1, {"reward": [[1, 2], []], "base_fee_per_gas": [1]})

    def test_block_count(self):
        self.assertEqual(parse_block_count(None), 5)
        self.assertEqual(parse_block_count("abc"), 5)
        self.assertEqual(parse_block_count("0"), 5)
        self.assertEqual(parse_block_count("7"), 7)
        self.assertEqual(parse_block_count("1000"), 100)


class AwsClientTests(unittest.TestCase):
    def setUp(self):
        aws_clients._reset_clients()

    def tearDown(self):
        aws_clients._reset_clients()

    @patch("mpc_shared.aws_clients.boto3")
    def test_get_ddb_singleton(self, mock_boto3):
        mock_boto3.client.return_value = MagicMock()

        result1 = _get_ddb()
        result2 = _get_ddb()

        self.assertIs(result1, result2)
        mock_boto3.client.assert_called_once()
        self.assertEqual(mock_boto3.client.call_args[0][0], "dynamodb")
        config = mock_boto3.client.call_args.kwargs["config"]
        self.assertEqual(config.retries["max_attempts"], 5)

    @patch("mpc_shared.aws_clients.boto3")
    def test_one_client_per_service(self, mock_boto3):
        mock_boto3.client.side_effect = lambda service, **kwargs: MagicMock(name=service)

        self.assertIsNot(aws_clients._get_sqs(), aws_clients._get_sfn())
        self.assertEqual(mock_boto3.client.call_count, 2)


if __name__ == "__main__":
    unittest.main()
