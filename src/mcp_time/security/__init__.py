"""
Security package for the Time MCP Server.

Components:
- AuthGate: bearer token verification and scope checks for HTTP
- TokenCache: optional bounded cache of verified tokens
- JWKSFetcher: fetches and caches issuer public keys
"""

from mcp_time.security.auth_gate import (
    AuthContext,
    AuthenticationError,
    AuthGate,
    AuthorizationError,
    TokenCache,
    extract_bearer_token,
)
from mcp_time.security.jwks_fetcher import JWKSFetcher, JWKSFetchError

__all__ = [
    "AuthContext",
    "AuthGate",
    "AuthenticationError",
    "AuthorizationError",
    "JWKSFetchError",
    "JWKSFetcher",
    "TokenCache",
    "extract_bearer_token",
]
