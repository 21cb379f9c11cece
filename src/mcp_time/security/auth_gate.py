"""
Bearer token gate for the HTTP transport.

This module verifies JWT bearer tokens locally (HMAC secret, PEM public key,
or keys from a JWKS endpoint) and checks the scopes a request needs.

Outcomes:
- AuthenticationError (HTTP 401): no usable credential, or the token failed
  verification (format, signature, audience, issuer, required claims)
- AuthorizationError (HTTP 403): the token is genuine but expired, or lacks
  a required scope

Authentication state is request scoped. The optional TokenCache only skips
repeated signature checks; scope checks run on every request.
"""

from __future__ import annotations

import hashlib
import math
import threading
import time
from collections import OrderedDict
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

import jwt
from jwt.exceptions import (
    InvalidAudienceError,
    InvalidIssuerError,
    InvalidSignatureError,
    MissingRequiredClaimError,
    PyJWTError,
)

from mcp_time.errors import ToolError
from mcp_time.logging import get_logger
from mcp_time.security.jwks_fetcher import JWKSFetcher, JWKSFetchError

if TYPE_CHECKING:
    from mcp_time.config import SecurityConfig

logger = get_logger(__name__)

BEARER_PREFIX = "bearer"
REQUIRED_CLAIMS = ("sub", "exp")
SCOPE_CLAIMS = ("scope", "scp", "scopes")

# Last second of year 9999, the upper bound of datetime
MAX_EXP_TIMESTAMP = 253402300799


# =============================================================================
# Errors and Context
# =============================================================================


class AuthenticationError(ToolError):
    """The request carries no usable credential, or verification failed."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(error_code="unauthenticated", message=message, details=details)


class AuthorizationError(ToolError):
    """The credential is genuine but does not grant access."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(
            error_code="permission_denied", message=message, details=details
        )


@dataclass(frozen=True)
class AuthContext:
    """
    Result of authenticating one request.

    Attributes:
        subject: Token subject ('sub' claim), None when anonymous.
        scopes: Scopes granted by the token.
        expires_at: Token expiry, None when anonymous.
        authenticated: Whether a token was verified.
    """

    subject: str | None = None
    scopes: frozenset[str] = field(default_factory=frozenset)
    expires_at: datetime | None = None
    authenticated: bool = False

    @classmethod
    def anonymous(cls) -> AuthContext:
        """Context used when authentication is disabled."""
        return cls()

    def missing_scopes(self, required: Iterable[str]) -> list[str]:
        """Return the required scopes this context does not grant, sorted."""
        return sorted(set(required) - self.scopes)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        return {
            "subject": self.subject,
            "scopes": sorted(self.scopes),
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "authenticated": self.authenticated,
        }


def extract_bearer_token(authorization: str | None) -> str:
    """
    Extract the token from an ``Authorization: Bearer <token>`` header.

    Raises:
        AuthenticationError: If the header is missing or malformed.
    """
    if not authorization:
        raise AuthenticationError(
            "Missing bearer token",
            details={"reason": "missing_token"},
        )

    scheme, _, token = authorization.strip().partition(" ")
    token = token.strip()
    if scheme.lower() != BEARER_PREFIX or not token or " " in token:
        raise AuthenticationError(
            "Malformed Authorization header",
            details={"reason": "malformed_header"},
        )
    return token


def _scopes_from_claims(claims: dict[str, Any]) -> frozenset[str]:
    scopes: set[str] = set()
    for claim in SCOPE_CLAIMS:
        value = claims.get(claim)
        if isinstance(value, str):
            scopes.update(value.split())
        elif isinstance(value, list):
            scopes.update(item for item in value if isinstance(item, str))
    return frozenset(scopes)


# =============================================================================
# Verified-token Cache
# =============================================================================


class TokenCache:
    """
    Bounded LRU cache of verified tokens.

    Entries are keyed by the SHA-256 digest of the token and expire after
    ``ttl_seconds`` or at the token's own expiry, whichever comes first. All
    access is serialized with a lock so the cache can be shared by concurrent
    requests.
    """

    def __init__(
        self,
        ttl_seconds: int,
        max_entries: int = 1024,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._ttl = ttl_seconds
        self._max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict[str, tuple[float, AuthContext]] = OrderedDict()
        self._lock = threading.Lock()

    @staticmethod
    def _key(token: str) -> str:
        return hashlib.sha256(token.encode("utf-8")).hexdigest()

    def get(self, token: str) -> AuthContext | None:
        """Return the cached context, or None if absent or expired."""
        key = self._key(token)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, context = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                return None
            self._entries.move_to_end(key)
            return context

    def put(self, token: str, context: AuthContext) -> None:
        """Cache a verified context, evicting the least recently used entry."""
        expires_at = self._clock() + self._ttl
        if context.expires_at is not None:
            expires_at = min(expires_at, context.expires_at.timestamp())

        key = self._key(token)
        with self._lock:
            self._entries[key] = (expires_at, context)
            self._entries.move_to_end(key)
            while len(self._entries) > self._max_entries:
                self._entries.popitem(last=False)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


# =============================================================================
# Auth Gate
# =============================================================================


class AuthGate:
    """
    Verifies bearer tokens and enforces per-endpoint scopes.

    The gate holds only configuration, the JWKS key cache and the optional
    verified-token cache, so one instance serves all concurrent requests.

    Example:
        >>> gate = AuthGate.from_config(config.security)
        >>> ctx = await gate.authorize(request.headers.get("Authorization"),
        ...                            required_scopes=["time:tools"])
    """

    def __init__(
        self,
        enabled: bool = False,
        *,
        algorithms: Iterable[str] = ("HS256", "RS256"),
        secret: str | None = None,
        public_key: str | None = None,
        jwks_fetcher: JWKSFetcher | None = None,
        audience: str | None = None,
        issuer: str | None = None,
        leeway_seconds: int = 0,
        token_cache: TokenCache | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._enabled = enabled
        self._algorithms = tuple(algorithms)
        self._secret = secret
        self._public_key = public_key
        self._jwks_fetcher = jwks_fetcher
        self._audience = audience
        self._issuer = issuer
        self._leeway = leeway_seconds
        self._token_cache = token_cache
        self._clock = clock

    @classmethod
    def from_config(
        cls,
        config: SecurityConfig,
        jwks_fetcher: JWKSFetcher | None = None,
    ) -> AuthGate:
        """
        Create an AuthGate from the security configuration.

        Raises:
            OSError: If ``public_key_path`` cannot be read.
        """
        public_key = config.public_key
        if public_key is None and config.public_key_path:
            public_key = Path(config.public_key_path).read_text()

        if jwks_fetcher is None and config.jwks_url:
            jwks_fetcher = JWKSFetcher.from_config(config)

        token_cache = None
        if config.token_cache_ttl_seconds > 0:
            token_cache = TokenCache(
                ttl_seconds=config.token_cache_ttl_seconds,
                max_entries=config.token_cache_max_entries,
            )

        return cls(
            enabled=config.auth_enabled,
            algorithms=config.algorithms,
            secret=config.secret,
            public_key=public_key,
            jwks_fetcher=jwks_fetcher,
            audience=config.audience,
            issuer=config.issuer,
            leeway_seconds=config.leeway_seconds,
            token_cache=token_cache,
        )

    @property
    def enabled(self) -> bool:
        return self._enabled

    async def authorize(
        self,
        authorization: str | None,
        required_scopes: Iterable[str] = (),
    ) -> AuthContext:
        """
        Authenticate a request and check its scopes.

        Args:
            authorization: Raw ``Authorization`` header value, if any.
            required_scopes: Scopes the endpoint requires.

        Returns:
            AuthContext of the caller. Anonymous when the gate is disabled.

        Raises:
            AuthenticationError: Missing, malformed or unverifiable token.
            AuthorizationError: Expired token or missing scope.
        """
        if not self._enabled:
            return AuthContext.anonymous()

        token = extract_bearer_token(authorization)
        context = await self.authenticate(token)

        missing = context.missing_scopes(required_scopes)
        if missing:
            logger.info(
                "Insufficient scope",
                extra={"subject": context.subject, "missing_scopes": missing},
            )
            raise AuthorizationError(
                "Insufficient scope",
                details={"reason": "insufficient_scope", "missing_scopes": missing},
            )
        return context

    async def authenticate(self, token: str) -> AuthContext:
        """
        Verify a token and build its AuthContext.

        Raises:
            AuthenticationError: Verification failed.
            AuthorizationError: The token is genuine but expired.
        """
        if self._token_cache is not None:
            cached = self._token_cache.get(token)
            if cached is not None:
                return cached

        claims = await self._decode(token)
        context = self._build_context(claims)

        if self._token_cache is not None:
            self._token_cache.put(token, context)
        return context

    async def _resolve_key(self, header: dict[str, Any]) -> Any:
        algorithm = header.get("alg")
        if algorithm not in self._algorithms:
            raise AuthenticationError(
                "Token algorithm is not accepted",
                details={"reason": "unsupported_algorithm", "alg": algorithm},
            )

        if algorithm.startswith("HS"):
            if not self._secret:
                raise AuthenticationError(
                    "No secret configured for HMAC tokens",
                    details={"reason": "unsupported_algorithm", "alg": algorithm},
                )
            return self._secret

        if self._public_key:
            return self._public_key

        if self._jwks_fetcher is not None:
            kid = header.get("kid")
            if not kid:
                raise AuthenticationError(
                    "Token missing key ID (kid)",
                    details={"reason": "missing_kid"},
                )
            try:
                key_data = await self._jwks_fetcher.get_key(kid)
            except JWKSFetchError as e:
                logger.error("JWKS unavailable", extra={"error": str(e)})
                raise AuthenticationError(
                    "Signing keys are unavailable",
                    details={"reason": "jwks_fetch_failed"},
                ) from e
            if key_data is None:
                raise AuthenticationError(
                    "Unknown signing key",
                    details={"reason": "unknown_kid", "kid": kid},
                )
            return key_data["key"]

        raise AuthenticationError(
            "No public key configured for asymmetric tokens",
            details={"reason": "unsupported_algorithm", "alg": algorithm},
        )

    async def _decode(self, token: str) -> dict[str, Any]:
        try:
            header = jwt.get_unverified_header(token)
        except PyJWTError as e:
            raise AuthenticationError(
                "Invalid token format",
                details={"reason": "decode_error"},
            ) from e

        key = await self._resolve_key(header)

        # Expiry is checked last, by hand: only an otherwise valid token
        # may be reported as expired.
        try:
            claims = jwt.decode(
                token,
                key,
                algorithms=[header["alg"]],
                audience=self._audience,
                issuer=self._issuer,
                leeway=self._leeway,
                options={
                    "require": list(REQUIRED_CLAIMS),
                    "verify_exp": False,
                    "verify_aud": self._audience is not None,
                },
            )
        except InvalidSignatureError as e:
            raise AuthenticationError(
                "Invalid token signature",
                details={"reason": "invalid_signature"},
            ) from e
        except InvalidAudienceError as e:
            raise AuthenticationError(
                "Invalid token audience",
                details={"reason": "invalid_audience"},
            ) from e
        except InvalidIssuerError as e:
            raise AuthenticationError(
                "Invalid token issuer",
                details={"reason": "invalid_issuer"},
            ) from e
        except MissingRequiredClaimError as e:
            raise AuthenticationError(
                f"Token missing required claim: {e.claim}",
                details={"reason": "missing_claim", "claim": e.claim},
            ) from e
        except PyJWTError as e:
            raise AuthenticationError(
                "Invalid token",
                details={"reason": "invalid_token"},
            ) from e

        exp = claims.get("exp")
        if isinstance(exp, bool) or not isinstance(exp, (int, float)):
            raise AuthenticationError(
                "Token 'exp' claim must be a number",
                details={"reason": "invalid_claim", "claim": "exp"},
            )
        if not math.isfinite(exp) or not 0 <= exp <= MAX_EXP_TIMESTAMP:
            raise AuthenticationError(
                "Token 'exp' claim is out of range",
                details={"reason": "invalid_claim", "claim": "exp"},
            )
        if not isinstance(claims.get("sub"), str) or not claims["sub"]:
            raise AuthenticationError(
                "Token 'sub' claim must be a non-empty string",
                details={"reason": "invalid_claim", "claim": "sub"},
            )
        if exp <= self._clock() - self._leeway:
            raise AuthorizationError(
                "Token has expired",
                details={"reason": "token_expired"},
            )
        return claims

    def _build_context(self, claims: dict[str, Any]) -> AuthContext:
        return AuthContext(
            subject=claims["sub"],
            scopes=_scopes_from_claims(claims),
            expires_at=datetime.fromtimestamp(claims["exp"], tz=UTC),
            authenticated=True,
        )
