"""mpc_shared.errors — Exception types shared by the MPC Lambda functions.

Step Functions catch task failures by error name, so the orchestration
errors keep stable class names: ``ValidationError``, ``NotFoundError`` and
``OrchestrationError`` for everything else.
"""

from __future__ import annotations

from typing import Optional


class OrchestrationError(Exception):
    """Unknown failure inside a step-function task."""


class ValidationError(OrchestrationError, ValueError):
    """Input could not be accepted."""


class NotFoundError(OrchestrationError):
    """A record the task depends on does not exist."""


# ---------------------------------------------------------------------------
# Repositories
# ---------------------------------------------------------------------------


class RepositoryError(Exception):
    """Unexpected DynamoDB failure."""


class OrderNotFoundError(RepositoryError):
    pass


class ConditionalCheckFailedError(RepositoryError):
    pass


class PreviousStatesNotFoundError(RepositoryError):
    pass


class KeyNotFoundError(RepositoryError):
    pass


class CacheKeyNotFoundError(RepositoryError):
    pass


class PolicyNotFoundError(RepositoryError):
    pass


class NonceNotFoundError(RepositoryError):
    pass


class SponsorAddressNotFoundError(RepositoryError):
    pass


# ---------------------------------------------------------------------------
# External services
# ---------------------------------------------------------------------------


class BlockchainProviderError(Exception):
    """JSON-RPC or Alchemy call failed."""


class RpcError(BlockchainProviderError):
    """The node answered with a JSON-RPC error object."""

    def __init__(self, method: str, code: Optional[int], message: str):
        super().__init__(f"{method} failed: {message}")
        self.method = method
        self.code = code
        self.message = message


class FeeHistoryError(ValueError):
    """The node returned fee data that cannot be aggregated."""


class MaestroError(OrchestrationError):
    """Maestro rejected a request or answered with an unexpected payload."""


class SecretNotFoundError(Exception):
    pass
