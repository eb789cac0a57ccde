"""mpc_shared.maestro — Maestro policy/signing service client.

Maestro authenticates service accounts with a password grant against the
tenant login route and then expects a bearer token. The token's ``exp``
claim is read (unverified, it is Maestro's token) to refresh ahead of
expiry; a 401 forces one fresh login and retry.

Environment variables:
    MAESTRO_URL                   base URL, no trailing slash
    MAESTRO_TENANT_NAME           tenant used for login
    SERVICE_NAME                  service account user name
    MAESTRO_API_KEY_SECRET_NAME   Secrets Manager secret holding the password
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import os
import time
import urllib.error
import urllib.parse
import urllib.request
from typing import Any, Dict, List, Optional, Tuple

import jwt

from mpc_shared.errors import MaestroError, SecretNotFoundError
from mpc_shared.model import LEVEL_DOMAIN, LEVEL_TENANT
from mpc_shared.secrets import get_secret

logger = logging.getLogger(__name__)

MAESTRO_URL = os.environ.get("MAESTRO_URL", "").rstrip("/")
MAESTRO_TENANT_NAME = os.environ.get("MAESTRO_TENANT_NAME", "")
SERVICE_NAME = os.environ.get("SERVICE_NAME", "")
MAESTRO_API_KEY_SECRET_NAME = os.environ.get("MAESTRO_API_KEY_SECRET_NAME", "")

HTTP_TIMEOUT_SECONDS = 10
_TOKEN_REFRESH_MARGIN_SECONDS = 60


class MaestroSession:
    """Bearer-token session against one Maestro tenant."""

    def __init__(
        self,
        url: Optional[str] = None,
        tenant: Optional[str] = None,
        service_name: Optional[str] = None,
        secret_name: Optional[str] = None,
    ):
        self.url = (url or MAESTRO_URL).rstrip("/")
        self.tenant = tenant or MAESTRO_TENANT_NAME
        self.service_name = service_name or SERVICE_NAME
        self.secret_name = secret_name or MAESTRO_API_KEY_SECRET_NAME
        self._token: Optional[str] = None
        self._expires_at: Optional[float] = None

    def _open(self, req: urllib.request.Request) -> Tuple[int, str]:
        try:
            with urllib.request.urlopen(req, timeout=HTTP_TIMEOUT_SECONDS) as resp:
                return resp.status, resp.read().decode("utf-8", errors="replace")
        except urllib.error.HTTPError as exc:
            return exc.code, exc.read().decode("utf-8", errors="replace")
        except urllib.error.URLError as exc:
            raise MaestroError(f"Maestro unreachable: {exc.reason}") from exc

    def login(self) -> str:
        try:
            password = get_secret(self.secret_name)
        except SecretNotFoundError as exc:
            raise MaestroError("Maestro service credentials unavailable") from exc
        form = urllib.parse.urlencode(
            {
                "username": self.service_name,
                "password": password,
                "grant_type": "password",
            }
        ).encode()
        req = urllib.request.Request(
            f"{self.url}/{self.tenant}/login",
            data=form,
            method="POST",
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )
        status, text = self._open(req)
        if status != 200:
            raise MaestroError(f"Maestro login failed ({status}): {text}")
        try:
            token = json.loads(text)["access_token"]
        except (json.JSONDecodeError, KeyError, TypeError) as exc:
            raise MaestroError("Maestro login response had no access_token") from exc

        self._token = token
        self._expires_at = None
        try:
            claims = jwt.decode(token, options={"verify_signature": False})
            if claims.get("exp"):
                self._expires_at = float(claims["exp"])
        except jwt.InvalidTokenError:
            logger.warning("Maestro access token is not a JWT; refreshing on 401 only")
        logger.info("Logged in to Maestro tenant %s", self.tenant)
        return token

    def _bearer(self) -> str:
        expiring = (
            self._expires_at is not None
            and self._expires_at - time.time() < _TOKEN_REFRESH_MARGIN_SECONDS
        )
        if self._token is None or expiring:
            return self.login()
        return self._token

    def request(self, method: str, path: str, body: Optional[Dict[str, Any]] = None) -> Tuple[int, str]:
        """``(status, text)`` of an authenticated JSON request."""
        data = json.dumps(body).encode() if body is not None else None
        for attempt in range(2):
            headers = {"Authorization": f"Bearer {self._bearer()}", "Accept": "application/json"}
            if data is not None:
                headers["Content-Type"] = "application/json"
            req = urllib.request.Request(f"{self.url}{path}", data=data, method=method, headers=headers)
            status, text = self._open(req)
            if status == 401 and attempt == 0:
                logger.info("Maestro returned 401, logging in again")
                self._token = None
                continue
            return status, text
        return status, text


_session: Optional[MaestroSession] = None


def _get_session() -> MaestroSession:
    """Get (or create) the Maestro session singleton."""
    global _session
    if _session is None:
        _session = MaestroSession()
    return _session


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------


def generate_key(domain_name: str) -> Dict[str, str]:
    status, text = _get_session().request("POST", "/generate", {"domain_name": domain_name})
    if not 200 <= status < 300:
        raise MaestroError(text)
    try:
        body = json.loads(text)
        return {"key_id": body["key_id"], "public_key": body["public_key"]}
    except (json.JSONDecodeError, KeyError, TypeError) as exc:
        raise MaestroError(f"unexpected key generation response: {text}") from exc


def sign(request: Dict[str, Any]) -> Tuple[int, str]:
    return _get_session().request("POST", "/sign", request)


def _policy_path(domain_name: str, policy_name: str) -> str:
    return f"/{urllib.parse.quote(domain_name)}/policy/{urllib.parse.quote(policy_name)}"


def policy_exists(domain_name: str, policy_name: str) -> bool:
    status, _ = _get_session().request("GET", _policy_path(domain_name, policy_name))
    return status == 200


def get_policy(domain_name: str, policy_name: str) -> Dict[str, Any]:
    """``{name, approvals}`` of a Maestro policy."""
    status, text = _get_session().request("GET", _policy_path(domain_name, policy_name))
    if status != 200:
        raise MaestroError(text)
    try:
        serialized = json.loads(text)["serialized_policy"]
    except (json.JSONDecodeError, KeyError, TypeError) as exc:
        raise MaestroError(f"unexpected policy response: {text}") from exc
    return {"name": policy_name, "approvals": approvals_from_serialized_policy(serialized)}


def _required_names(document: Dict[str, Any], field: str) -> List[str]:
    section = document.get(field)
    if not isinstance(section, dict):
        raise ValueError(field)
    required = section.get("required")
    optional = section.get("optional")
    if not isinstance(required, list) or not isinstance(optional, list):
        raise ValueError(field)
    if not all(isinstance(n, str) for n in required):
        raise ValueError(field)
    return required


def approvals_from_serialized_policy(serialized: str) -> List[Dict[str, Any]]:
    """Tenant approvers first, then domain approvers; required ones only."""
    try:
        raw = base64.b64decode(serialized, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise MaestroError("Error decoding text") from exc
    try:
        text = raw.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise MaestroError("Could not convert decoded policy bytes to a string") from exc
    try:
        document = json.loads(text)
        if not isinstance(document, dict) or not isinstance(document.get("policy_name"), str):
            raise ValueError("policy_name")
        tenant = _required_names(document, "tenant_approvals")
        domain = _required_names(document, "domain_approvals")
    except ValueError as exc:
        raise MaestroError("Error converting decoded text from json to struct") from exc

    approvals = [{"level": LEVEL_TENANT, "name": n} for n in tenant]
    approvals.extend({"level": LEVEL_DOMAIN, "name": n} for n in domain)
    return approvals
