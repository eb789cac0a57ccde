"""mpc_shared — Shared utilities for the MPC wallet Lambda functions.

Provides:
    - Lazy AWS client singletons and cached Secrets Manager lookups
    - HTTP response and request-extraction helpers
    - DynamoDB serialization and DynamoDB-JSON format conversion
    - Order, policy and key domain model
    - EVM transaction parsing, validation and encoding
    - DynamoDB repositories (orders, keys, cache, policy registry, AEs)
    - EVM blockchain provider and fee estimation
    - Maestro API client
"""

__version__ = "1.0.0"
