"""
JWKS (JSON Web Key Set) fetcher for bearer token verification.

This module fetches the public keys published by a token issuer and caches
them for a configurable TTL, so the JWKS endpoint is not contacted on every
request. Token verification itself stays local.
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

import httpx
from jwt.algorithms import ECAlgorithm, RSAAlgorithm

from mcp_time.logging import get_logger

if TYPE_CHECKING:
    from mcp_time.config import SecurityConfig

logger = get_logger(__name__)

JWKS_REQUEST_TIMEOUT_SECONDS = 10.0

# Unknown kids refetch the key set at most this often
MIN_FORCED_REFRESH_INTERVAL_SECONDS = 60


class JWKSFetchError(Exception):
    """Exception raised when JWKS fetching fails."""


class JWKSFetcher:
    """
    Fetches and caches a JSON Web Key Set.

    Keys are indexed by ``kid``. RSA (RS*/PS*) and EC (ES*) keys are
    supported; other key types are skipped with a warning.

    Example:
        >>> fetcher = JWKSFetcher(
        ...     jwks_url="https://issuer.example.com/.well-known/jwks.json",
        ...     cache_ttl_seconds=3600,
        ... )
        >>> keys = await fetcher.get_keys()
    """

    def __init__(
        self,
        jwks_url: str,
        cache_ttl_seconds: int = 3600,
        min_refresh_interval_seconds: int = MIN_FORCED_REFRESH_INTERVAL_SECONDS,
    ) -> None:
        """
        Initialize the JWKS fetcher.

        Args:
            jwks_url: URL to fetch JWKS from.
            cache_ttl_seconds: How long to cache keys in seconds.
            min_refresh_interval_seconds: Minimum time between refreshes
                triggered by unknown kids.
        """
        self._jwks_url = jwks_url
        self._cache_ttl = timedelta(seconds=cache_ttl_seconds)
        self._keys: dict[str, dict[str, Any]] = {}
        self._cache_expiry: datetime | None = None
        self._min_refresh_interval = timedelta(seconds=min_refresh_interval_seconds)
        self._last_forced_refresh: datetime | None = None
        self._lock = asyncio.Lock()

    @classmethod
    def from_config(cls, config: SecurityConfig) -> JWKSFetcher:
        """
        Create a JWKSFetcher from the security configuration.

        Raises:
            ValueError: If no ``jwks_url`` is configured.
        """
        if not config.jwks_url:
            raise ValueError("security.jwks_url is not configured")
        return cls(
            jwks_url=config.jwks_url,
            cache_ttl_seconds=config.jwks_cache_ttl_seconds,
        )

    @property
    def jwks_url(self) -> str:
        return self._jwks_url

    @property
    def cache_ttl_seconds(self) -> int:
        return int(self._cache_ttl.total_seconds())

    def _is_cache_valid(self) -> bool:
        if self._cache_expiry is None:
            return False
        return datetime.now(UTC) < self._cache_expiry

    async def get_keys(self) -> dict[str, dict[str, Any]]:
        """
        Return the cached keys, fetching them first when the cache is stale.

        Returns:
            Mapping of kid to ``{"key": public_key, "alg": algorithm}``.

        Raises:
            JWKSFetchError: If fetching JWKS fails.
        """
        async with self._lock:
            if not self._is_cache_valid():
                await self._refresh_keys()
            return self._keys

    async def get_key(self, kid: str) -> dict[str, Any] | None:
        """
        Look up a key by kid, refreshing once if it is unknown.

        An unknown kid usually means the issuer rotated its keys. Such
        refreshes are rate limited, so a stream of tokens with made-up kids
        cannot turn into a stream of requests to the issuer.

        Raises:
            JWKSFetchError: If fetching JWKS fails.
        """
        keys = await self.get_keys()
        if kid in keys:
            return keys[kid]

        async with self._lock:
            # Another request may have refreshed while this one waited
            if kid in self._keys:
                return self._keys[kid]
            if self._refresh_throttled():
                logger.info("Unknown kid, JWKS refreshed recently", extra={"kid": kid})
                return None
            logger.info("Unknown kid, refreshing JWKS", extra={"kid": kid})
            self._last_forced_refresh = datetime.now(UTC)
            await self._refresh_keys()
            return self._keys.get(kid)

    def _refresh_throttled(self) -> bool:
        if self._last_forced_refresh is None:
            return False
        return datetime.now(UTC) < self._last_forced_refresh + self._min_refresh_interval

    async def _refresh_keys(self) -> None:
        logger.debug("Refreshing JWKS", extra={"jwks_url": self._jwks_url})

        try:
            async with httpx.AsyncClient(timeout=JWKS_REQUEST_TIMEOUT_SECONDS) as client:
                response = await client.get(self._jwks_url)
                response.raise_for_status()
                jwks_data = response.json()
        except httpx.HTTPError as e:
            logger.error("Failed to fetch JWKS", extra={"error": str(e)})
            raise JWKSFetchError(f"Failed to fetch JWKS: {e}") from e
        except ValueError as e:
            logger.error("JWKS response is not JSON", extra={"error": str(e)})
            raise JWKSFetchError(f"Invalid JWKS response: {e}") from e

        try:
            self._keys = self._parse_jwks(jwks_data)
        except (TypeError, ValueError) as e:
            raise JWKSFetchError(f"Failed to parse JWKS keys: {e}") from e

        self._cache_expiry = datetime.now(UTC) + self._cache_ttl
        logger.info("JWKS refreshed", extra={"key_count": len(self._keys)})

    def _parse_jwks(self, jwks_data: Any) -> dict[str, dict[str, Any]]:
        if not isinstance(jwks_data, dict) or "keys" not in jwks_data:
            raise ValueError("Invalid JWKS: missing 'keys' field")

        keys: dict[str, dict[str, Any]] = {}
        for key_data in jwks_data["keys"]:
            kid = key_data.get("kid")
            if not kid:
                logger.warning("Skipping JWK without 'kid'")
                continue

            key_type = key_data.get("kty")
            algorithm = key_data.get("alg") or ("ES256" if key_type == "EC" else "RS256")
            try:
                if key_type == "RSA":
                    public_key = RSAAlgorithm.from_jwk(key_data)
                elif key_type == "EC":
                    public_key = ECAlgorithm.from_jwk(key_data)
                else:
                    logger.warning(
                        "Skipping JWK with unsupported key type",
                        extra={"kid": kid, "kty": key_type},
                    )
                    continue
            except Exception as e:
                logger.warning(
                    "Skipping unparsable JWK", extra={"kid": kid, "error": str(e)}
                )
                continue

            keys[kid] = {"key": public_key, "alg": algorithm}

        return keys

    async def force_refresh(self) -> dict[str, dict[str, Any]]:
        """Refetch the JWKS regardless of cache state."""
        async with self._lock:
            await self._refresh_keys()
            return self._keys

    def clear_cache(self) -> None:
        """Clear the cached keys."""
        self._keys = {}
        self._cache_expiry = None
        self._last_forced_refresh = None
